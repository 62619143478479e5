"""
DocumentNumberService -- sequential, race-free document numbers.

Numbers have the form ``{PREFIX}-{YEAR}-{NNNN}`` (e.g. ``GRN-2024-0001``),
sequential per prefix per year.  Each (prefix, year) pair is a named counter
in SequenceService, so allocation is a locked increment inside the caller's
transaction: concurrent creators never read the same value, and a rolled
back posting hands its number back.  The running part is zero-padded to the
policy's ``number_width`` and simply grows wider past 9999.
"""

from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.policy import LedgerPolicy
from stock_kernel.logging_config import get_logger
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.document_number")


def format_document_number(prefix: str, year: int, value: int, width: int = 4) -> str:
    return f"{prefix}-{year}-{value:0{width}d}"


class DocumentNumberService:
    """
    Allocates document numbers from per-prefix-per-year counters.

    Non-goals:
        - Does NOT commit; an allocated number is only consumed when the
          caller's transaction commits.
    """

    def __init__(
        self,
        session: Session,
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._policy = policy or LedgerPolicy()
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def next(self, prefix: str, year: int | None = None) -> str:
        """
        Allocate the next number for a printed prefix.

        Args:
            prefix: Printed prefix, e.g. "GRN" or "PO".
            year: Calendar year; defaults to the clock's current year.
        """
        year = year or self._clock.now().year
        value = self._sequences.next_value(f"{prefix}-{year}")
        number = format_document_number(prefix, year, value, self._policy.number_width)
        logger.info(
            "document_number_allocated",
            extra={"prefix": prefix, "year": year, "document_number": number},
        )
        return number

    def next_for(self, key: str, year: int | None = None) -> str:
        """Allocate using the policy prefix configured for a document key."""
        return self.next(self._policy.prefix_for(key), year)
