"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and persist with ``session.flush()`` -- never
    ``session.commit()``.

Invariants enforced:
    Transaction boundaries belong to the caller: MovementPostingService
    (one transaction per document), session_scope(), or the test harness.
    A stock posting spans several services (numbering, aggregate, ledger)
    and must commit or roll back as one unit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Query-only (read) methods belong in ``stock_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
