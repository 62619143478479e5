"""
Module: stock_kernel.selectors.feasibility_selector
Responsibility: Gathers BOM lines and available stock and hands them to the
    pure ``compute_feasibility`` core.
Architecture position: Kernel > Selectors.
"""

from decimal import Decimal
from uuid import UUID

from stock_kernel.domain.feasibility import (
    ComponentRequirement,
    FeasibilityResult,
    compute_feasibility,
)
from stock_kernel.exceptions import NotFoundError
from stock_kernel.models.production import Bom
from stock_kernel.selectors.base import BaseSelector
from stock_kernel.selectors.stock_selector import StockSelector


class FeasibilitySelector(BaseSelector[Bom]):
    def for_bom(
        self,
        bom_id: UUID,
        warehouse_id: UUID | None = None,
        requested_quantity: Decimal | None = None,
    ) -> FeasibilityResult:
        """
        How many parent units the BOM can build from available stock.

        Args:
            warehouse_id: Count stock in this warehouse only (all bins);
                None counts every warehouse.
            requested_quantity: Optional build quantity for shortage figures.

        Raises:
            NotFoundError: the BOM does not exist.
        """
        bom = self.session.get(Bom, bom_id)
        if bom is None:
            raise NotFoundError("Bom", bom_id)

        requirements = [
            ComponentRequirement(
                component_item_id=line.component_item_id,
                quantity_per_unit=line.quantity,
                wastage_percent=line.wastage_percent,
            )
            for line in bom.lines
        ]
        available = StockSelector(self.session).available_by_item(
            [r.component_item_id for r in requirements], warehouse_id
        )
        return compute_feasibility(requirements, available, requested_quantity)
