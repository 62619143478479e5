"""
Module: stock_kernel.models.stock_level
Responsibility: The mutable stock aggregate -- one row per
    (item, warehouse, bin-or-none) triple.
Architecture position: Kernel > Models.  Written only by
    services/stock_aggregate.py; read by selectors.

Invariants enforced:
    - One row per triple.  bin_id may be NULL, so uniqueness is declared on
      bin_key, which holds str(bin_id) or UNBINNED_KEY and is never NULL.
    - available_quantity == quantity - reserved_quantity after every write.
    - version increments on every UPDATE (SQLAlchemy version_id_col); a
      stale in-memory row raises StaleDataError at flush.
    - Rows are never deleted; a row that reaches zero persists.

Audit relevance:
    The aggregate is a cache of the transaction ledger.  For every triple,
    quantity equals the ledger's quantity_in minus quantity_out
    (LedgerSelector.verify_against_aggregate checks this).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString

UNBINNED_KEY = "*"


def bin_key_for(bin_id: UUID | None) -> str:
    """Uniqueness key for a bin id; unbinned stock gets its own key."""
    return str(bin_id) if bin_id is not None else UNBINNED_KEY


class StockLevel(Base):
    """
    Cached on-hand / reserved / available quantity plus weighted-average cost.

    Guarantees:
        - quantity >= 0 whenever the negative-stock policy rejects over-issue.
        - last_transaction_at is the time of the latest movement or
          reservation change.
    """

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint(
            "item_id", "warehouse_id", "bin_key", name="uq_stock_level_triple"
        ),
        Index("idx_stock_level_item", "item_id"),
        Index("idx_stock_level_warehouse", "warehouse_id"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )
    bin_key: Mapped[str] = mapped_column(String(36), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    reserved_quantity: Mapped[Decimal] = mapped_column(
        default=Decimal("0"), nullable=False
    )
    available_quantity: Mapped[Decimal] = mapped_column(
        default=Decimal("0"), nullable=False
    )
    average_cost: Mapped[Decimal] = mapped_column(
        default=Decimal("0"), nullable=False
    )
    last_transaction_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<StockLevel item={self.item_id} warehouse={self.warehouse_id} "
            f"bin={self.bin_key} qty={self.quantity}>"
        )
