"""
Production services -- bills of materials and work orders.

Responsibility:
    BomService maintains versioned BOMs (one active version per parent
    item).  WorkOrderService creates and releases work orders and records
    completions, which post a Production Backflush document through
    MovementPostingService.

Architecture position:
    Kernel > Services.  BomService and the work order lifecycle methods only
    flush.  ``record_completion`` delegates to the posting facade, which owns
    the transaction of the backflush.

Invariants enforced:
    - At most one active BOM per parent item.
    - A BOM never lists its own parent as a component.
    - Completions are only accepted by released or in-progress orders (the
      posting service checks this inside the posting transaction).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import BackflushRequest, BomLineInput
from stock_kernel.domain.policy import LedgerPolicy
from stock_kernel.domain.quantities import ZERO
from stock_kernel.exceptions import (
    InvalidQuantityError,
    MissingFieldError,
    NotFoundError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.documents import DocumentStatus
from stock_kernel.models.production import Bom, BomLine, WorkOrder
from stock_kernel.services.base import BaseService
from stock_kernel.services.document_number_service import DocumentNumberService
from stock_kernel.services.movement_posting_service import (
    MovementPostingService,
    PostingResult,
)
from stock_kernel.services.registry_service import ReferenceValidator

logger = get_logger("services.production")


class BomService(BaseService[Bom]):
    """Versioned bills of materials."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_bom(
        self,
        parent_item_id: UUID,
        version: str,
        lines: list[BomLineInput],
        created_by: str,
        backflush_enabled: bool = False,
        effective_date: date | None = None,
        notes: str | None = None,
    ) -> Bom:
        """
        Create an inactive BOM version.

        Raises:
            UnknownReferenceError: parent or a component item does not exist.
            ValidationError: duplicate version, self-referencing component,
                or a negative quantity / wastage.
        """
        if not version:
            raise MissingFieldError("version")
        refs = ReferenceValidator(self.session)
        parent = refs.item(parent_item_id)

        existing = self.session.execute(
            select(Bom.id).where(Bom.parent_item_id == parent.id, Bom.version == version)
        ).scalar_one_or_none()
        if existing is not None:
            raise ValidationError(
                f"BOM version {version} already exists for item {parent.code}",
                field="version",
            )

        components = []
        for sort_order, line in enumerate(lines, start=1):
            component = refs.item(line.component_item_id)
            if component.id == parent.id:
                raise ValidationError(
                    f"Item {parent.code} cannot be a component of itself",
                    field="component_item_id",
                )
            if line.quantity is None or line.quantity < ZERO:
                raise InvalidQuantityError(line.quantity, sort_order)
            if line.wastage_percent < ZERO:
                raise ValidationError(
                    f"Wastage percent cannot be negative on line {sort_order}",
                    field="wastage_percent",
                )
            components.append((sort_order, line, component))

        bom = Bom(
            parent_item_id=parent.id,
            version=version,
            is_active=False,
            backflush_enabled=backflush_enabled,
            effective_date=effective_date or self._clock.today(),
            notes=notes,
            created_by=created_by,
        )
        self.session.add(bom)
        self.session.flush()

        for sort_order, line, component in components:
            self.session.add(
                BomLine(
                    bom_id=bom.id,
                    component_item_id=component.id,
                    quantity=line.quantity,
                    uom=line.uom or component.uom,
                    wastage_percent=line.wastage_percent,
                    backflush_default=line.backflush_default,
                    sort_order=sort_order,
                    notes=line.notes,
                )
            )
        self.session.flush()
        self.session.refresh(bom, attribute_names=["lines"])

        logger.info(
            "bom_created",
            extra={
                "bom_id": str(bom.id),
                "parent_item_id": str(parent.id),
                "version": version,
                "line_count": len(lines),
            },
        )
        return bom

    def activate(self, bom_id: UUID) -> Bom:
        """Make this version the active one; siblings are deactivated."""
        bom = self.session.get(Bom, bom_id)
        if bom is None:
            raise NotFoundError("Bom", bom_id)
        self.session.execute(
            update(Bom)
            .where(Bom.parent_item_id == bom.parent_item_id, Bom.id != bom.id)
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        bom.is_active = True
        self.session.flush()
        logger.info(
            "bom_activated",
            extra={"bom_id": str(bom.id), "version": bom.version},
        )
        return bom

    def get_active(self, parent_item_id: UUID) -> Bom | None:
        return self.session.execute(
            select(Bom).where(
                Bom.parent_item_id == parent_item_id,
                Bom.is_active.is_(True),
            )
        ).scalar_one_or_none()


class WorkOrderService(BaseService[WorkOrder]):
    """
    Work order lifecycle: draft -> released -> in_progress -> completed.

    Cancellation is allowed until the first completion is recorded.
    """

    def __init__(
        self,
        session,
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._policy = policy or LedgerPolicy()
        self._clock = clock or SystemClock()
        self._numbers = DocumentNumberService(session, self._policy, self._clock)

    def _get(self, work_order_id: UUID) -> WorkOrder:
        """The work order row, locked for a status change."""
        work_order = self.session.get(
            WorkOrder, work_order_id, with_for_update=True, populate_existing=True
        )
        if work_order is None:
            raise NotFoundError("WorkOrder", work_order_id)
        return work_order

    def create(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        planned_quantity: Decimal,
        created_by: str,
        bom_id: UUID | None = None,
        start_date: date | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> WorkOrder:
        """
        Create a draft work order numbered ``WO-YYYY-NNNN``.

        When ``bom_id`` is omitted, completions use the item's active BOM at
        posting time.
        """
        refs = ReferenceValidator(self.session)
        item = refs.item(item_id)
        refs.warehouse(warehouse_id)
        if planned_quantity is None or planned_quantity <= ZERO:
            raise InvalidQuantityError(planned_quantity)
        if bom_id is not None:
            bom = self.session.get(Bom, bom_id)
            if bom is None:
                raise NotFoundError("Bom", bom_id)
            if bom.parent_item_id != item.id:
                raise ValidationError(
                    f"BOM {bom_id} does not build item {item.code}", field="bom_id"
                )

        start = start_date or self._clock.today()
        work_order = WorkOrder(
            number=self._numbers.next_for("WO", start.year),
            item_id=item.id,
            bom_id=bom_id,
            warehouse_id=warehouse_id,
            planned_quantity=planned_quantity,
            completed_quantity=ZERO,
            scrap_quantity=ZERO,
            status=DocumentStatus.DRAFT,
            start_date=start,
            due_date=due_date,
            notes=notes,
            created_by=created_by,
        )
        self.session.add(work_order)
        self.session.flush()
        logger.info(
            "work_order_created",
            extra={
                "work_order_number": work_order.number,
                "item_id": str(item.id),
                "planned_quantity": planned_quantity,
            },
        )
        return work_order

    def release(self, work_order_id: UUID, released_by: str) -> WorkOrder:
        work_order = self._get(work_order_id)
        if work_order.status != DocumentStatus.DRAFT:
            raise ValidationError(
                f"Work order {work_order.number} is {work_order.status}, "
                "only draft orders can be released",
                field="status",
            )
        work_order.status = DocumentStatus.RELEASED
        work_order.updated_by = released_by
        self.session.flush()
        logger.info("work_order_released", extra={"work_order_number": work_order.number})
        return work_order

    def cancel(self, work_order_id: UUID, cancelled_by: str) -> WorkOrder:
        work_order = self._get(work_order_id)
        if work_order.completed_quantity > ZERO or work_order.status in (
            DocumentStatus.COMPLETED,
            DocumentStatus.CANCELLED,
        ):
            raise ValidationError(
                f"Work order {work_order.number} can no longer be cancelled",
                field="status",
            )
        work_order.status = DocumentStatus.CANCELLED
        work_order.updated_by = cancelled_by
        self.session.flush()
        logger.info("work_order_cancelled", extra={"work_order_number": work_order.number})
        return work_order

    def record_completion(
        self,
        work_order_id: UUID,
        completed_quantity: Decimal,
        completed_by: str,
        component_bin_id: UUID | None = None,
        output_bin_id: UUID | None = None,
        completion_date: date | None = None,
        idempotency_key: str | None = None,
        auto_commit: bool = True,
    ) -> PostingResult:
        """
        Record finished output and backflush the BOM components.

        Posts one ``BKF`` document: component issues for every backflush
        line of an enabled BOM plus the ASSEMBLY_BUILD receipt of the
        finished item, and advances ``completed_quantity``.

        Returns:
            The posting result; nothing is written unless it succeeded.
        """
        poster = MovementPostingService(
            self.session,
            policy=self._policy,
            clock=self._clock,
            auto_commit=auto_commit,
        )
        return poster.post_backflush(
            BackflushRequest(
                work_order_id=work_order_id,
                completed_quantity=completed_quantity,
                completed_by=completed_by,
                component_bin_id=component_bin_id,
                output_bin_id=output_bin_id,
                completion_date=completion_date,
                idempotency_key=idempotency_key,
            )
        )
