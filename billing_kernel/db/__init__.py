"""Database layer - engine, base classes and column types."""

from billing_kernel.db.base import Base, ExactDecimal, TrackedBase, UUIDString
from billing_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from billing_kernel.db.types import DECIMAL_CONTEXT, decimal_to_str, fits_scale, to_decimal

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "ExactDecimal",
    "DECIMAL_CONTEXT",
    "decimal_to_str",
    "fits_scale",
    "to_decimal",
]
