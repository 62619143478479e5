"""
Module: stock_kernel.models.procurement
Responsibility: Purchase order persistence -- only as far as receipts need it
    (received-quantity tracking).  Approval chains, VAT and quotes live
    outside the kernel.
Architecture position: Kernel > Models.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase, UUIDString
from stock_kernel.models.documents import DocumentStatus


class PurchaseOrder(TrackedBase):
    __tablename__ = "purchase_orders"

    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id"), nullable=False
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[DocumentStatus] = mapped_column(
        String(20), default=DocumentStatus.DRAFT, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="purchase_order",
        order_by="PurchaseOrderLine.line_no",
        lazy="selectin",
    )


class PurchaseOrderLine(Base):
    """Ordered quantity of one item; receipts add to received_quantity."""

    __tablename__ = "purchase_order_lines"

    purchase_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    uom: Mapped[str] = mapped_column(String(20), default="PCS", nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(
        default=Decimal("0"), nullable=False
    )

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates="lines")

    @property
    def outstanding_quantity(self) -> Decimal:
        return self.quantity - self.received_quantity
