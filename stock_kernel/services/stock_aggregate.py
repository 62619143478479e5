"""
StockAggregateStore -- the locked read-modify-write of StockLevel rows.

Responsibility:
    Applies a signed quantity delta to the (item, warehouse, bin) aggregate,
    maintains reserved / available quantities and the moving weighted-average
    cost, and enforces the negative-stock policy.  It does NOT write ledger
    entries; the posting service pairs every movement with one.

Architecture position:
    Kernel > Services.  Called by MovementPostingService; reserve/release are
    also called directly by allocation flows.

Invariants enforced:
    - No lost updates: the row is read with ``SELECT ... FOR UPDATE`` (a
      write transaction on SQLite) and carries a version counter, so two
      writers can never both base their update on the same prior quantity.
    - available_quantity == quantity - reserved_quantity after every write.
    - Under the "reject" policy an outbound movement larger than
      available_quantity raises InsufficientStockError and nothing changes.
      Under "clamp" the movement is cut to the quantity on hand and a
      ``stock_clamped`` warning is logged; reservations shrink to fit.
    - Rows are created on first touch and never deleted.

Failure modes:
    - InsufficientStockError (reject policy, or any over-reservation).
    - ReservationError when releasing more than is reserved.
    - ConcurrencyConflictError when a stale in-memory row is flushed.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.policy import LedgerPolicy
from stock_kernel.domain.quantities import ZERO, weighted_average_cost
from stock_kernel.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidQuantityError,
    ReservationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_level import StockLevel, bin_key_for
from stock_kernel.services.base import BaseService

logger = get_logger("services.stock_aggregate")


@dataclass(frozen=True)
class MovementOutcome:
    """Result of one aggregate update."""

    level: StockLevel
    requested_delta: Decimal
    applied_delta: Decimal

    @property
    def clamped(self) -> bool:
        return self.applied_delta != self.requested_delta


class StockAggregateStore(BaseService[StockLevel]):
    """
    Contract:
        Every method locks exactly one StockLevel row and flushes; the caller
        owns the transaction.

    Non-goals:
        - No ledger writes and no document validation.
    """

    def __init__(
        self,
        session: Session,
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._policy = policy or LedgerPolicy()
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    def _select_locked(
        self, item_id: UUID, warehouse_id: UUID, bin_id: UUID | None
    ) -> StockLevel | None:
        return self.session.execute(
            select(StockLevel)
            .where(
                StockLevel.item_id == item_id,
                StockLevel.warehouse_id == warehouse_id,
                StockLevel.bin_key == bin_key_for(bin_id),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_level(
        self, item_id: UUID, warehouse_id: UUID, bin_id: UUID | None
    ) -> StockLevel:
        """Return the locked row for a triple, creating a zero row on first touch."""
        level = self._select_locked(item_id, warehouse_id, bin_id)
        if level is not None:
            return level

        savepoint = self.session.begin_nested()
        try:
            level = StockLevel(
                item_id=item_id,
                warehouse_id=warehouse_id,
                bin_id=bin_id,
                bin_key=bin_key_for(bin_id),
                quantity=ZERO,
                reserved_quantity=ZERO,
                available_quantity=ZERO,
                average_cost=ZERO,
            )
            self.session.add(level)
            self.session.flush()
            savepoint.commit()
            logger.debug(
                "stock_level_created",
                extra={
                    "item_id": str(item_id),
                    "warehouse_id": str(warehouse_id),
                    "bin_key": level.bin_key,
                },
            )
            return level
        except IntegrityError:
            # Another transaction created the row first
            savepoint.rollback()
            level = self._select_locked(item_id, warehouse_id, bin_id)
            if level is None:
                raise
            return level

    def _flush(self, level: StockLevel) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError("StockLevel", level.id) from exc

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    def apply(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None,
        delta: Decimal,
        unit_cost: Decimal | None = None,
        *,
        allow_clamp: bool | None = None,
    ) -> MovementOutcome:
        """
        Apply a signed quantity delta and report what was actually applied.

        Args:
            delta: Positive for inbound, negative for outbound; never zero.
            unit_cost: Cost basis of an inbound movement; updates the
                weighted-average cost.  Ignored for outbound movements.
            allow_clamp: Overrides the policy's negative-stock handling for
                this one movement when not None.

        Raises:
            InvalidQuantityError: delta is zero.
            InsufficientStockError: outbound beyond available (reject policy).
        """
        if delta == ZERO:
            raise InvalidQuantityError(delta)

        level = self.lock_level(item_id, warehouse_id, bin_id)
        applied = delta

        if delta < ZERO and -delta > level.available_quantity:
            clamp = (
                self._policy.clamps_negative_stock if allow_clamp is None else allow_clamp
            )
            if not clamp:
                raise InsufficientStockError(
                    item_id=item_id,
                    warehouse_id=warehouse_id,
                    bin_id=bin_id,
                    available=level.available_quantity,
                    requested=-delta,
                )
            applied = -min(-delta, max(level.quantity, ZERO))
            logger.warning(
                "stock_clamped",
                extra={
                    "item_id": str(item_id),
                    "warehouse_id": str(warehouse_id),
                    "bin_key": level.bin_key,
                    "requested": -delta,
                    "applied": -applied,
                    "on_hand": level.quantity,
                },
            )

        if applied > ZERO and unit_cost is not None:
            level.average_cost = weighted_average_cost(
                on_hand=level.quantity,
                current_cost=level.average_cost,
                received=applied,
                unit_cost=unit_cost,
            )

        # INVARIANT: available = quantity - reserved after every write
        level.quantity = level.quantity + applied
        if level.reserved_quantity > level.quantity:
            level.reserved_quantity = max(level.quantity, ZERO)
        level.available_quantity = level.quantity - level.reserved_quantity
        level.last_transaction_at = self._clock.now()
        self._flush(level)

        logger.debug(
            "stock_level_updated",
            extra={
                "item_id": str(item_id),
                "warehouse_id": str(warehouse_id),
                "bin_key": level.bin_key,
                "delta": applied,
                "quantity": level.quantity,
                "available_quantity": level.available_quantity,
            },
        )
        return MovementOutcome(level=level, requested_delta=delta, applied_delta=applied)

    def apply_movement(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None,
        delta: Decimal,
        unit_cost: Decimal | None = None,
        *,
        allow_clamp: bool | None = None,
    ) -> StockLevel:
        """Apply a delta and return the updated StockLevel."""
        return self.apply(
            item_id, warehouse_id, bin_id, delta, unit_cost, allow_clamp=allow_clamp
        ).level

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None,
        quantity: Decimal,
    ) -> StockLevel:
        """
        Earmark available stock.  Reservations never move stock and write no
        ledger entry.

        Raises:
            InsufficientStockError: quantity exceeds available, whatever the
                negative-stock policy.
        """
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)
        level = self.lock_level(item_id, warehouse_id, bin_id)
        if quantity > level.available_quantity:
            raise InsufficientStockError(
                item_id=item_id,
                warehouse_id=warehouse_id,
                bin_id=bin_id,
                available=level.available_quantity,
                requested=quantity,
            )
        level.reserved_quantity = level.reserved_quantity + quantity
        level.available_quantity = level.quantity - level.reserved_quantity
        level.last_transaction_at = self._clock.now()
        self._flush(level)
        logger.info(
            "stock_reserved",
            extra={
                "item_id": str(item_id),
                "warehouse_id": str(warehouse_id),
                "quantity": quantity,
                "reserved_quantity": level.reserved_quantity,
            },
        )
        return level

    def release(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None,
        quantity: Decimal,
    ) -> StockLevel:
        """
        Return reserved stock to available.

        Raises:
            ReservationError: quantity exceeds the reserved quantity.
        """
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)
        level = self.lock_level(item_id, warehouse_id, bin_id)
        if quantity > level.reserved_quantity:
            raise ReservationError(item_id, level.reserved_quantity, quantity)
        level.reserved_quantity = level.reserved_quantity - quantity
        level.available_quantity = level.quantity - level.reserved_quantity
        level.last_transaction_at = self._clock.now()
        self._flush(level)
        logger.info(
            "stock_released",
            extra={
                "item_id": str(item_id),
                "warehouse_id": str(warehouse_id),
                "quantity": quantity,
                "reserved_quantity": level.reserved_quantity,
            },
        )
        return level
