"""
Module: billing_kernel.db.base
Responsibility: Declarative base for the billing tables, the portable UUID and
    decimal column types, and the TrackedBase audit mixin for documents.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  ALL model files import from here.  This module MUST NOT import from
    models/, services/, selectors/, or domain/.

Invariants enforced:
    - Amounts, quantities and prices are Numeric(38, 9); tax rates are
      Numeric(5, 2).  Validation keeps every value within those limits, so a
      stored value reads back exactly as it was written.
    - SQLite has no exact decimal storage; there the same columns hold the
      plain decimal string.
    - Every document row records who created it and who last changed it.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return str(value) if value is not None else None

    def process_result_value(self, value, dialect):
        return PyUUID(value) if value is not None else None


class ExactDecimal(TypeDecorator):
    """
    Decimal column that never passes through float.

    PostgreSQL gets ``NUMERIC(precision, scale)``.  SQLite's NUMERIC affinity
    converts to REAL, so there the value is stored as text and parsed back
    with ``Decimal``.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            # sign, point and digits
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return Decimal(value)


class Base(DeclarativeBase):
    """Declarative base: uuid4 primary keys and the column type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: ExactDecimal(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """Audit columns.  ``created_by_id`` is required; updates stamp the actor."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    created_by_id: Mapped[PyUUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(nullable=True)
