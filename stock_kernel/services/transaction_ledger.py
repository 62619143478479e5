"""
TransactionLedger -- append-only writer of the Daily Transaction Register.

Responsibility:
    Inserts one LedgerEntry per aggregate movement.  The running balances are
    derived here from the StockLevel row the aggregate store just updated, so
    a caller cannot record a balance that disagrees with the aggregate.

Architecture position:
    Kernel > Services.  Called by MovementPostingService only.

Invariants enforced:
    - Append-only: there is no update or delete path (and the ORM listeners
      reject one).
    - seq comes from the locked "stock_ledger" counter; the posting service
      takes that lock before touching any StockLevel row, so postings are
      serialized and seq order equals commit order for every triple.
    - running_balance == StockLevel.quantity of the entry's triple after the
      paired update; warehouse_balance == the item's warehouse total.
    - Exactly one of quantity_in / quantity_out is positive, except a fully
      clamped outbound movement which records zero on both sides.

Failure modes:
    - ValidationError on an inconsistent spec (negative quantities, both
      sides positive, or a level of a different triple).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.quantities import ZERO, extended_cost
from stock_kernel.exceptions import ValidationError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.ledger import LedgerEntry, TransactionType
from stock_kernel.models.stock_level import StockLevel, bin_key_for
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class LedgerEntrySpec:
    """Everything a ledger entry records except the derived balances and seq."""

    transaction_type: TransactionType
    voucher_number: str
    document_id: UUID
    item_id: UUID
    warehouse_id: UUID
    bin_id: UUID | None
    quantity_in: Decimal
    quantity_out: Decimal
    uom: str
    created_by: str
    unit_cost: Decimal | None = None
    work_order_id: UUID | None = None
    batch_number: str | None = None
    serial_number: str | None = None
    reference: str | None = None
    transaction_at: datetime | None = None


class TransactionLedger:
    """
    Contract:
        ``append`` is a pure insert inside the caller's transaction.

    Non-goals:
        - Does not touch StockLevel rows; the caller applies the movement
          first and hands the updated row in.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def acquire_posting_lock(self) -> None:
        """
        Lock the ledger sequence for the rest of the transaction.

        Called by a posting after its document number and before its first
        StockLevel row, which fixes the lock order for every posting.
        """
        self._sequences.lock(SequenceService.STOCK_LEDGER)

    def _warehouse_balance(self, item_id: UUID, warehouse_id: UUID) -> Decimal:
        quantities = self._session.execute(
            select(StockLevel.quantity).where(
                StockLevel.item_id == item_id,
                StockLevel.warehouse_id == warehouse_id,
            )
        ).scalars()
        return sum(quantities, ZERO)

    def append(self, spec: LedgerEntrySpec, level: StockLevel) -> LedgerEntry:
        """
        Insert one ledger entry mirroring an aggregate update.

        Args:
            spec: Movement facts.
            level: The StockLevel row after the paired update.

        Returns:
            The flushed LedgerEntry.
        """
        if spec.quantity_in < ZERO or spec.quantity_out < ZERO:
            raise ValidationError("Ledger quantities cannot be negative")
        if spec.quantity_in > ZERO and spec.quantity_out > ZERO:
            raise ValidationError(
                "A ledger entry records either quantity_in or quantity_out, not both"
            )
        if (
            level.item_id != spec.item_id
            or level.warehouse_id != spec.warehouse_id
            or level.bin_key != bin_key_for(spec.bin_id)
        ):
            raise ValidationError("Stock level does not belong to the ledger entry's location")

        moved = spec.quantity_in or spec.quantity_out
        entry = LedgerEntry(
            seq=self._sequences.next_value(SequenceService.STOCK_LEDGER),
            transaction_type=spec.transaction_type,
            voucher_number=spec.voucher_number,
            document_id=spec.document_id,
            item_id=spec.item_id,
            warehouse_id=spec.warehouse_id,
            bin_id=spec.bin_id,
            quantity_in=spec.quantity_in,
            quantity_out=spec.quantity_out,
            uom=spec.uom,
            unit_cost=spec.unit_cost,
            total_cost=extended_cost(moved, spec.unit_cost),
            # INVARIANT: balances are read from the aggregate, never supplied
            running_balance=level.quantity,
            warehouse_balance=self._warehouse_balance(spec.item_id, spec.warehouse_id),
            work_order_id=spec.work_order_id,
            batch_number=spec.batch_number,
            serial_number=spec.serial_number,
            created_by=spec.created_by,
            transaction_at=spec.transaction_at or self._clock.now(),
            reference=spec.reference,
        )
        self._session.add(entry)
        self._session.flush()

        logger.debug(
            "ledger_entry_appended",
            extra={
                "seq": entry.seq,
                "transaction_type": str(spec.transaction_type.value),
                "voucher_number": spec.voucher_number,
                "item_id": str(spec.item_id),
                "quantity_in": spec.quantity_in,
                "quantity_out": spec.quantity_out,
                "running_balance": entry.running_balance,
            },
        )
        return entry
