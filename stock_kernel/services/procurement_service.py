"""
ProcurementService -- purchase orders as far as receiving needs them.

Creates purchase orders with a ``PO-YYYY-NNNN`` number.  Goods receipts
reference PO lines and advance their ``received_quantity``; approval
chains, VAT and quotes are handled outside the kernel.
"""

from datetime import date
from uuid import UUID

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import PurchaseOrderLineInput
from stock_kernel.domain.policy import LedgerPolicy
from stock_kernel.domain.quantities import ZERO
from stock_kernel.exceptions import (
    InvalidQuantityError,
    MissingFieldError,
    NotFoundError,
    UnknownReferenceError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.documents import DocumentStatus
from stock_kernel.models.procurement import PurchaseOrder, PurchaseOrderLine
from stock_kernel.services.base import BaseService
from stock_kernel.services.document_number_service import DocumentNumberService
from stock_kernel.services.registry_service import ReferenceValidator

logger = get_logger("services.procurement")


class ProcurementService(BaseService[PurchaseOrder]):
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

    def create_purchase_order(
        self,
        supplier_id: UUID,
        lines: list[PurchaseOrderLineInput],
        created_by: str,
        order_date: date | None = None,
        expected_date: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        """
        Create an approved purchase order ready for receiving.

        Raises:
            UnknownReferenceError: supplier or item does not exist.
            MissingFieldError: no lines.
            InvalidQuantityError: a line quantity is not positive.
        """
        if supplier_id is None:
            raise MissingFieldError("supplier_id")
        refs = ReferenceValidator(self.session)
        if refs.supplier(supplier_id) is None:
            raise UnknownReferenceError("supplier", supplier_id)
        if not lines:
            raise MissingFieldError("lines")

        items = []
        for line_no, line in enumerate(lines, start=1):
            item = refs.item(line.item_id)
            if line.quantity is None or line.quantity <= ZERO:
                raise InvalidQuantityError(line.quantity, line_no)
            if line.unit_price < ZERO:
                raise ValidationError(
                    f"Unit price cannot be negative on line {line_no}", field="unit_price"
                )
            items.append(item)

        order_date = order_date or self._clock.today()
        order = PurchaseOrder(
            number=self._numbers.next_for("PO", order_date.year),
            supplier_id=supplier_id,
            order_date=order_date,
            expected_date=expected_date,
            status=DocumentStatus.APPROVED,
            notes=notes,
            created_by=created_by,
        )
        self.session.add(order)
        self.session.flush()

        for line_no, (line, item) in enumerate(zip(lines, items), start=1):
            self.session.add(
                PurchaseOrderLine(
                    purchase_order_id=order.id,
                    line_no=line_no,
                    item_id=item.id,
                    quantity=line.quantity,
                    uom=line.uom or item.uom,
                    unit_price=line.unit_price,
                    received_quantity=ZERO,
                )
            )
        self.session.flush()
        self.session.refresh(order, attribute_names=["lines"])

        logger.info(
            "purchase_order_created",
            extra={
                "document_number": order.number,
                "supplier_id": str(supplier_id),
                "line_count": len(lines),
            },
        )
        return order

    def get(self, purchase_order_id: UUID) -> PurchaseOrder:
        order = self.session.get(PurchaseOrder, purchase_order_id)
        if order is None:
            raise NotFoundError("PurchaseOrder", purchase_order_id)
        return order
