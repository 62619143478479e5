"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing integers for the ledger sequence and for
    every per-prefix-per-year document number counter.  A dedicated counter
    table with row-level locking (``SELECT ... FOR UPDATE``) guarantees
    uniqueness and ordering under concurrent access.

Architecture position:
    Kernel > Services.  Called by DocumentNumberService (document numbers)
    and TransactionLedger (ledger seq).

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  Scanning MAX(number)+1 is FORBIDDEN: two concurrent
      readers would see the same maximum.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value, so committed values
      have no gaps.

Failure modes:
    - IntegrityError: concurrent counter creation (handled via savepoint
      rollback and re-read under lock).
    - Deadlock: avoided by the fixed lock order of a posting (document
      counter, then ledger counter, then stock rows).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger
from stock_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Guarantees:
        - Strictly monotonic values per sequence name.
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations for the
          same sequence (PostgreSQL); SQLite serializes whole write
          transactions (BEGIN IMMEDIATE).

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
    """

    STOCK_LEDGER = "stock_ledger"

    def __init__(self, session: Session):
        self._session = session

    def _select_locked(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_or_create(self, sequence_name: str) -> SequenceCounter:
        """Return the counter row locked for this transaction, creating it at 0."""
        counter = self._select_locked(sequence_name)
        if counter is not None:
            return counter

        # First use of this sequence.  Another transaction may create it at
        # the same moment; the savepoint keeps the caller's work intact.
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            counter = self._select_locked(sequence_name)
            if counter is None:
                raise
            return counter

    def lock(self, sequence_name: str) -> int:
        """
        Lock a sequence row without consuming a value.

        Postconditions:
            - The counter row exists and is locked until the transaction
              completes.

        Returns:
            The current value (0 for a fresh sequence).
        """
        return self._lock_or_create(sequence_name).current_value

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any previously
              committed value for this sequence name.
            - The counter row is locked until the transaction completes.
        """
        counter = self._lock_or_create(sequence_name)

        # INVARIANT: increment via locked row, never aggregate-max+1
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None
