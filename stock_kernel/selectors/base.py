"""
Module: stock_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors (stock
    levels, ledger history, documents, feasibility).
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - No row locks: reads may observe data slightly older than an in-flight
      posting, never a partially applied one.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs, ORM rows or computed results.
    """

    def __init__(self, session: Session):
        self.session = session
