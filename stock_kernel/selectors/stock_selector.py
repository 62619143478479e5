"""
Module: stock_kernel.selectors.stock_selector
Responsibility: Read-only queries over the StockLevel aggregate: current
    levels per location, available quantity per item and reorder alerts.
Architecture position: Kernel > Selectors.

Totals are summed in Python from the Decimal row values so that SQLite
(which has no exact numeric type) returns the same figures as PostgreSQL.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.quantities import ZERO
from stock_kernel.models.registry import Item
from stock_kernel.models.stock_level import StockLevel, bin_key_for
from stock_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ReorderAlert:
    """An item whose stock has fallen to or below its reorder point."""

    item_id: UUID
    item_code: str
    quantity: Decimal
    reorder_point: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.reorder_point - self.quantity


class StockSelector(BaseSelector[StockLevel]):
    """Current stock positions."""

    def levels(
        self,
        item_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        bin_id: UUID | None = None,
    ) -> list[StockLevel]:
        """
        Stock rows matching the given filters.

        ``bin_id`` narrows to one bin; without it, binned and unbinned rows
        are both returned.
        """
        stmt = select(StockLevel)
        if item_id is not None:
            stmt = stmt.where(StockLevel.item_id == item_id)
        if warehouse_id is not None:
            stmt = stmt.where(StockLevel.warehouse_id == warehouse_id)
        if bin_id is not None:
            stmt = stmt.where(StockLevel.bin_id == bin_id)
        stmt = stmt.order_by(StockLevel.item_id, StockLevel.warehouse_id, StockLevel.bin_key)
        return list(self.session.execute(stmt).scalars().all())

    def get_level(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None = None,
    ) -> StockLevel | None:
        """The row of one exact triple; ``bin_id=None`` is the unbinned row."""
        return self.session.execute(
            select(StockLevel).where(
                StockLevel.item_id == item_id,
                StockLevel.warehouse_id == warehouse_id,
                StockLevel.bin_key == bin_key_for(bin_id),
            )
        ).scalar_one_or_none()

    def on_hand(self, item_id: UUID, warehouse_id: UUID | None = None) -> Decimal:
        return sum((level.quantity for level in self.levels(item_id, warehouse_id)), ZERO)

    def available_by_item(
        self,
        item_ids: Iterable[UUID] | None = None,
        warehouse_id: UUID | None = None,
    ) -> dict[UUID, Decimal]:
        """
        Available quantity per item, summed over every bin of the warehouse
        (or of all warehouses).  Requested items without stock map to zero.
        """
        stmt = select(StockLevel.item_id, StockLevel.available_quantity)
        wanted = None
        if item_ids is not None:
            wanted = list(item_ids)
            if not wanted:
                return {}
            stmt = stmt.where(StockLevel.item_id.in_(wanted))
        if warehouse_id is not None:
            stmt = stmt.where(StockLevel.warehouse_id == warehouse_id)

        totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for item_id, available in self.session.execute(stmt).all():
            totals[item_id] += available
        if wanted is not None:
            return {item_id: totals[item_id] for item_id in wanted}
        return dict(totals)

    def below_reorder_point(self, warehouse_id: UUID | None = None) -> list[ReorderAlert]:
        """Active items whose total quantity is at or below their reorder point."""
        items = self.session.execute(
            select(Item)
            .where(Item.is_active.is_(True), Item.reorder_point.is_not(None))
            .order_by(Item.code)
        ).scalars().all()
        if not items:
            return []

        stmt = select(StockLevel.item_id, StockLevel.quantity).where(
            StockLevel.item_id.in_([item.id for item in items])
        )
        if warehouse_id is not None:
            stmt = stmt.where(StockLevel.warehouse_id == warehouse_id)
        totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for item_id, quantity in self.session.execute(stmt).all():
            totals[item_id] += quantity

        return [
            ReorderAlert(
                item_id=item.id,
                item_code=item.code,
                quantity=totals[item.id],
                reorder_point=item.reorder_point,
            )
            for item in items
            if totals[item.id] <= item.reorder_point
        ]
