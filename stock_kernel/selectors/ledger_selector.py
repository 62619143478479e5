"""
Module: stock_kernel.selectors.ledger_selector
Responsibility: Read-only queries over the Daily Transaction Register:
    filtered history, balance replay and reconciliation of the ledger
    against the StockLevel aggregate.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/.  MUST NOT import from services/.

Invariants checked (not enforced) here:
    - For every (item, warehouse, bin) triple, the sum of quantity_in minus
      quantity_out over its ledger entries equals StockLevel.quantity.
    - The latest entry's running_balance equals that same quantity.

Audit relevance:
    ``verify_against_aggregate`` is the reconciliation report: an empty list
    means the aggregate is fully explained by the ledger.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.quantities import ZERO
from stock_kernel.models.ledger import LedgerEntry, TransactionType
from stock_kernel.models.stock_level import StockLevel, bin_key_for
from stock_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class BalanceDiscrepancy:
    """A triple whose aggregate quantity is not explained by the ledger."""

    item_id: UUID
    warehouse_id: UUID
    bin_key: str
    aggregate_quantity: Decimal
    ledger_quantity: Decimal

    @property
    def difference(self) -> Decimal:
        return self.aggregate_quantity - self.ledger_quantity


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class LedgerSelector(BaseSelector[LedgerEntry]):
    """
    Contract:
        ``query`` returns entries newest first (seq descending);
        ``entries_for_document`` returns a document's entries in posting
        order.
    """

    def query(
        self,
        item_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        transaction_type: TransactionType | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        work_order_id: UUID | None = None,
        voucher_number: str | None = None,
        limit: int | None = None,
    ) -> list[LedgerEntry]:
        """
        Filtered ledger history.

        Args:
            date_from: Inclusive start date (UTC).
            date_to: Inclusive end date (UTC).
            limit: Maximum number of entries returned.
        """
        stmt = select(LedgerEntry)
        if item_id is not None:
            stmt = stmt.where(LedgerEntry.item_id == item_id)
        if warehouse_id is not None:
            stmt = stmt.where(LedgerEntry.warehouse_id == warehouse_id)
        if transaction_type is not None:
            stmt = stmt.where(
                LedgerEntry.transaction_type == TransactionType(transaction_type)
            )
        if date_from is not None:
            stmt = stmt.where(LedgerEntry.transaction_at >= _start_of(date_from))
        if date_to is not None:
            stmt = stmt.where(
                LedgerEntry.transaction_at < _start_of(date_to + timedelta(days=1))
            )
        if work_order_id is not None:
            stmt = stmt.where(LedgerEntry.work_order_id == work_order_id)
        if voucher_number is not None:
            stmt = stmt.where(LedgerEntry.voucher_number == voucher_number)
        stmt = stmt.order_by(LedgerEntry.seq.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def entries_for_document(self, document_id: UUID) -> list[LedgerEntry]:
        return list(
            self.session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.document_id == document_id)
                .order_by(LedgerEntry.seq)
            ).scalars().all()
        )

    def _triple_filter(self, stmt, item_id, warehouse_id, bin_id):
        stmt = stmt.where(
            LedgerEntry.item_id == item_id,
            LedgerEntry.warehouse_id == warehouse_id,
        )
        if bin_id is None:
            return stmt.where(LedgerEntry.bin_id.is_(None))
        return stmt.where(LedgerEntry.bin_id == bin_id)

    def replay_balance(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None = None,
    ) -> Decimal:
        """Recompute a triple's quantity as the sum of in minus out."""
        stmt = self._triple_filter(
            select(LedgerEntry.quantity_in, LedgerEntry.quantity_out),
            item_id,
            warehouse_id,
            bin_id,
        )
        total = ZERO
        for quantity_in, quantity_out in self.session.execute(stmt).all():
            total += quantity_in - quantity_out
        return total

    def latest_entry(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None = None,
    ) -> LedgerEntry | None:
        stmt = self._triple_filter(select(LedgerEntry), item_id, warehouse_id, bin_id)
        return self.session.execute(
            stmt.order_by(LedgerEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def verify_against_aggregate(self) -> list[BalanceDiscrepancy]:
        """
        Compare every StockLevel row with the ledger replay of its triple.

        Returns:
            One BalanceDiscrepancy per mismatching triple; empty when the
            ledger and the aggregate agree.
        """
        ledger_totals: dict[tuple[UUID, UUID, str], Decimal] = defaultdict(lambda: ZERO)
        rows = self.session.execute(
            select(
                LedgerEntry.item_id,
                LedgerEntry.warehouse_id,
                LedgerEntry.bin_id,
                LedgerEntry.quantity_in,
                LedgerEntry.quantity_out,
            )
        ).all()
        for item_id, warehouse_id, bin_id, quantity_in, quantity_out in rows:
            ledger_totals[(item_id, warehouse_id, bin_key_for(bin_id))] += (
                quantity_in - quantity_out
            )

        discrepancies = []
        seen = set()
        for level in self.session.execute(select(StockLevel)).scalars():
            key = (level.item_id, level.warehouse_id, level.bin_key)
            seen.add(key)
            if level.quantity != ledger_totals[key]:
                discrepancies.append(
                    BalanceDiscrepancy(
                        item_id=level.item_id,
                        warehouse_id=level.warehouse_id,
                        bin_key=level.bin_key,
                        aggregate_quantity=level.quantity,
                        ledger_quantity=ledger_totals[key],
                    )
                )

        # Ledger movements for a triple that has no aggregate row at all
        for key, total in ledger_totals.items():
            if key not in seen and total != ZERO:
                item_id, warehouse_id, bin_key = key
                discrepancies.append(
                    BalanceDiscrepancy(
                        item_id=item_id,
                        warehouse_id=warehouse_id,
                        bin_key=bin_key,
                        aggregate_quantity=ZERO,
                        ledger_quantity=total,
                    )
                )
        return discrepancies
