"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    write service in the kernel.  Services receive a SQLAlchemy ``Session``
    and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services.  Every service in ``billing_kernel/services/`` that
    writes rows extends this class.

Invariants enforced:
    Services flush within the caller's transaction and never commit or roll
    back the outer transaction themselves.  DocumentOrchestrator (or the
    test harness) owns commit/rollback, so a failed request leaves neither a
    consumed counter value nor an orphaned item row behind.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from billing_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only query helpers -- those belong in
          ``billing_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
