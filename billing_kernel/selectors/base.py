"""
Module: billing_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/ and models/.
    MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never call add(), delete(), flush() or
      commit() on the session they are given.
    - Session ownership: the caller owns the session and its transaction, so
      a selector read inside a write transaction sees that transaction's
      uncommitted rows.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from billing_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Abstract base class for all selectors."""

    def __init__(self, session: Session):
        self.session = session
