"""
BOM feasibility -- how many parent units current stock can build.

Pure functional core: the caller supplies the BOM requirements and the
available quantity per component; no database access happens here
(``FeasibilitySelector`` gathers the inputs).

    per_unit          = quantity * (1 + wastage% / 100)
    producible(line)  = floor(available / per_unit)
    max_producible    = min over lines of producible(line)

Lines whose per-unit requirement is zero never constrain production and are
ignored.  A BOM without constraining lines yields zero units: there is no
recipe to build from.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from uuid import UUID

from stock_kernel.domain.quantities import ZERO, with_wastage


@dataclass(frozen=True)
class ComponentRequirement:
    component_item_id: UUID
    quantity_per_unit: Decimal
    wastage_percent: Decimal = ZERO


@dataclass(frozen=True)
class ComponentFeasibility:
    """Per-component outcome of a feasibility check."""

    component_item_id: UUID
    required_per_unit: Decimal
    available: Decimal
    producible_units: int
    required_for_request: Decimal | None = None
    shortage: Decimal = ZERO


@dataclass(frozen=True)
class FeasibilityResult:
    max_producible_units: int
    constraining_item_id: UUID | None
    components: tuple[ComponentFeasibility, ...]
    requested_quantity: Decimal | None = None

    @property
    def can_produce(self) -> bool:
        """True when the requested quantity (or one unit) can be built."""
        target = self.requested_quantity if self.requested_quantity is not None else 1
        return self.max_producible_units >= target

    @property
    def shortages(self) -> tuple[ComponentFeasibility, ...]:
        return tuple(c for c in self.components if c.shortage > ZERO)


def _floor_units(available: Decimal, per_unit: Decimal) -> int:
    if available <= ZERO:
        return 0
    return int((available / per_unit).to_integral_value(rounding=ROUND_FLOOR))


def compute_feasibility(
    requirements: Sequence[ComponentRequirement],
    available: Mapping[UUID, Decimal],
    requested_quantity: Decimal | None = None,
) -> FeasibilityResult:
    """
    Compute the maximum producible units and the constraining component.

    Args:
        requirements: BOM lines as component requirements.
        available: Available quantity per component item id; missing items
            count as zero.
        requested_quantity: Optional build quantity; when given, each
            component reports its total requirement and shortage.

    Returns:
        FeasibilityResult.  Ties on the constraining component resolve to the
        first line in BOM order.
    """
    components: list[ComponentFeasibility] = []
    max_units: int | None = None
    constraining: UUID | None = None

    for req in requirements:
        per_unit = with_wastage(req.quantity_per_unit, req.wastage_percent)
        if per_unit <= ZERO:
            continue
        on_hand = available.get(req.component_item_id, ZERO)
        units = _floor_units(on_hand, per_unit)

        required_total = None
        shortage = ZERO
        if requested_quantity is not None:
            required_total = per_unit * requested_quantity
            shortage = max(ZERO, required_total - on_hand)

        components.append(
            ComponentFeasibility(
                component_item_id=req.component_item_id,
                required_per_unit=per_unit,
                available=on_hand,
                producible_units=units,
                required_for_request=required_total,
                shortage=shortage,
            )
        )

        if max_units is None or units < max_units:
            max_units = units
            constraining = req.component_item_id

    return FeasibilityResult(
        max_producible_units=max_units or 0,
        constraining_item_id=constraining,
        components=tuple(components),
        requested_quantity=requested_quantity,
    )
