"""
Module: stock_kernel.models.ledger
Responsibility: The Daily Transaction Register (DTR) -- an append-only log of
    every quantity movement with the running balance after it.
Architecture position: Kernel > Models.  Written only by
    services/transaction_ledger.py.

Invariants enforced:
    - Append-only: LedgerEntry rows are never updated or deleted (ORM
      listeners in db/immutability.py raise ImmutabilityViolationError).
    - seq is strictly monotonic and unique, allocated from the locked
      "stock_ledger" counter.
    - Exactly one of quantity_in / quantity_out is positive, except for a
      fully clamped outbound movement, where both are zero.
    - running_balance is the StockLevel.quantity of the entry's exact
      (item, warehouse, bin) triple after the paired update;
      warehouse_balance is the item's total across all bins of the
      warehouse after the update.

Audit relevance:
    This table is the source of truth; stock_levels is its cache.  Replaying
    quantity_in - quantity_out per triple reproduces the aggregate.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class TransactionType(str, Enum):
    """Kind of movement recorded on a ledger entry."""

    GRN = "GRN"
    ISSUE = "ISSUE"
    RETURN = "RETURN"
    TRANSFER = "TRANSFER"
    ADJUST = "ADJUST"
    ASSEMBLY_BUILD = "ASSEMBLY_BUILD"


class LedgerEntry(Base):
    """
    One immutable movement fact.

    Contract:
        Created only by TransactionLedger.append() in the same transaction
        as the StockLevel update it mirrors.

    Guarantees:
        - net_delta == quantity_in - quantity_out.
        - voucher_number is the number of the document that caused it.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_ledger_seq"),
        Index("idx_ledger_item_warehouse", "item_id", "warehouse_id"),
        Index("idx_ledger_voucher", "voucher_number"),
        Index("idx_ledger_work_order", "work_order_id"),
        Index("idx_ledger_transaction_at", "transaction_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(
        String(20), nullable=False
    )
    voucher_number: Mapped[str] = mapped_column(String(50), nullable=False)
    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )

    quantity_in: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    quantity_out: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    uom: Mapped[str] = mapped_column(String(20), default="PCS", nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    running_balance: Mapped[Decimal] = mapped_column(nullable=False)
    warehouse_balance: Mapped[Decimal] = mapped_column(nullable=False)

    work_order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_at: Mapped[datetime] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def net_delta(self) -> Decimal:
        return self.quantity_in - self.quantity_out

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry seq={self.seq} {self.transaction_type} "
            f"{self.voucher_number} in={self.quantity_in} out={self.quantity_out}>"
        )
