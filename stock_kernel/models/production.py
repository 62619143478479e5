"""
Module: stock_kernel.models.production
Responsibility: Bills of materials and work orders.  A BOM is read for
    feasibility projections and, when backflush is enabled, drives the
    component consumption posted on work order completion.
Architecture position: Kernel > Models.

Invariants enforced:
    - At most one active BOM version per parent item (BomService.activate).
    - (parent_item_id, version) is unique.
    - WorkOrder.completed_quantity only grows, through
      MovementPostingService.post_backflush.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase, UUIDString
from stock_kernel.models.documents import DocumentStatus


class Bom(TrackedBase):
    """A versioned recipe for one parent item."""

    __tablename__ = "boms"

    __table_args__ = (
        UniqueConstraint("parent_item_id", "version", name="uq_bom_parent_version"),
        Index("idx_bom_parent_active", "parent_item_id", "is_active"),
    )

    parent_item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False
    )
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    backflush_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["BomLine"]] = relationship(
        back_populates="bom",
        order_by="BomLine.sort_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Bom {self.parent_item_id} v{self.version}>"


class BomLine(Base):
    """A component and the quantity of it consumed per parent unit."""

    __tablename__ = "bom_lines"

    bom_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("boms.id"), nullable=False
    )
    component_item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    uom: Mapped[str] = mapped_column(String(20), default="PCS", nullable=False)
    wastage_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    backflush_default: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    bom: Mapped[Bom] = relationship(back_populates="lines")


class WorkOrder(TrackedBase):
    """Production order for a finished item in one warehouse."""

    __tablename__ = "work_orders"

    __table_args__ = (
        Index("idx_work_order_item", "item_id"),
        Index("idx_work_order_status", "status"),
    )

    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False
    )
    bom_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("boms.id"), nullable=True
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    planned_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    completed_quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    scrap_quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        String(20), default=DocumentStatus.DRAFT, nullable=False
    )
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<WorkOrder {self.number} status={self.status}>"
