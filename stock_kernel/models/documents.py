"""
Module: stock_kernel.models.documents
Responsibility: Business documents that group stock-mutation lines under one
    sequential number -- GRN, MIN, MRN, Transfer, Adjustment and Backflush --
    plus the idempotency register that detects resubmitted documents.
Architecture position: Kernel > Models.  Written only by
    services/movement_posting_service.py.

Invariants enforced:
    - number is unique per document table and follows {PREFIX}-{YEAR}-{NNNN}.
    - Headers and lines are created together in one transaction.
    - Lines of a COMPLETED header can be neither changed nor deleted (ORM
      listeners in db/immutability.py).
    - An idempotency key identifies at most one document across all types
      (document_idempotency.idempotency_key is unique).

Failure modes:
    - IntegrityError on a duplicate number or idempotency key; the posting
      service reports it as DuplicateDocumentError.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase, UUIDString


class DocumentStatus(str, Enum):
    """Lifecycle status shared by documents, purchase orders and work orders."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RELEASED = "released"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CLOSED = "closed"
    CONVERTED = "converted"


class VoucherType(str, Enum):
    """Stock document types; the value is the policy key of the number prefix."""

    GRN = "GRN"
    MIN = "MIN"
    MRN = "MRN"
    TRANSFER = "TRF"
    ADJUSTMENT = "ADJ"
    BACKFLUSH = "BKF"


class AdjustmentType(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


# =============================================================================
# Shared columns
# =============================================================================


class DocumentHeaderMixin:
    """Columns every stock document header carries."""

    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        String(20), default=DocumentStatus.DRAFT, nullable=False, active_history=True
    )
    document_date: Mapped[date] = mapped_column(Date, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_posted(self) -> bool:
        return self.status == DocumentStatus.COMPLETED


class DocumentLineMixin:
    """Columns every stock document line carries."""

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    uom: Mapped[str] = mapped_column(String(20), nullable=False)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


# =============================================================================
# GRN -- Goods Receipt Note
# =============================================================================


class Grn(DocumentHeaderMixin, TrackedBase):
    """Incoming stock from a supplier, optionally against a purchase order."""

    __tablename__ = "grns"

    __table_args__ = (
        Index("idx_grn_warehouse", "warehouse_id"),
        Index("idx_grn_date", "document_date"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    supplier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id"), nullable=True
    )
    purchase_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id"), nullable=True
    )
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delivery_note: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lines: Mapped[list["GrnLine"]] = relationship(
        back_populates="document",
        order_by="GrnLine.line_no",
        lazy="selectin",
    )


class GrnLine(DocumentLineMixin, Base):
    __tablename__ = "grn_lines"

    grn_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("grns.id"), nullable=False
    )
    bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    po_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("purchase_order_lines.id"), nullable=True
    )

    document: Mapped[Grn] = relationship(back_populates="lines")


# =============================================================================
# MIN -- Material Issue Note
# =============================================================================


class Min(DocumentHeaderMixin, TrackedBase):
    """Outbound stock issued to production or a department."""

    __tablename__ = "mins"

    __table_args__ = (
        Index("idx_min_warehouse", "warehouse_id"),
        Index("idx_min_work_order", "work_order_id"),
        Index("idx_min_date", "document_date"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    work_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("work_orders.id"), nullable=True
    )
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["MinLine"]] = relationship(
        back_populates="document",
        order_by="MinLine.line_no",
        lazy="selectin",
    )


class MinLine(DocumentLineMixin, Base):
    __tablename__ = "min_lines"

    min_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("mins.id"), nullable=False
    )
    bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )

    document: Mapped[Min] = relationship(back_populates="lines")


# =============================================================================
# MRN -- Material Return Note
# =============================================================================


class Mrn(DocumentHeaderMixin, TrackedBase):
    """Stock returned from production back to store."""

    __tablename__ = "mrns"

    __table_args__ = (
        Index("idx_mrn_warehouse", "warehouse_id"),
        Index("idx_mrn_date", "document_date"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    min_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("mins.id"), nullable=True
    )
    work_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("work_orders.id"), nullable=True
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["MrnLine"]] = relationship(
        back_populates="document",
        order_by="MrnLine.line_no",
        lazy="selectin",
    )


class MrnLine(DocumentLineMixin, Base):
    __tablename__ = "mrn_lines"

    mrn_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("mrns.id"), nullable=False
    )
    bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )
    condition: Mapped[str | None] = mapped_column(String(50), nullable=True)

    document: Mapped[Mrn] = relationship(back_populates="lines")


# =============================================================================
# Transfer
# =============================================================================


class Transfer(DocumentHeaderMixin, TrackedBase):
    """Movement between two locations; each line is an atomic out/in pair."""

    __tablename__ = "stock_transfers"

    __table_args__ = (
        Index("idx_transfer_from", "from_warehouse_id"),
        Index("idx_transfer_to", "to_warehouse_id"),
        Index("idx_transfer_date", "document_date"),
    )

    from_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    to_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    lines: Mapped[list["TransferLine"]] = relationship(
        back_populates="document",
        order_by="TransferLine.line_no",
        lazy="selectin",
    )


class TransferLine(DocumentLineMixin, Base):
    __tablename__ = "stock_transfer_lines"

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_transfers.id"), nullable=False
    )
    from_bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )
    to_bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )

    document: Mapped[Transfer] = relationship(back_populates="lines")


# =============================================================================
# Adjustment
# =============================================================================


class Adjustment(DocumentHeaderMixin, TrackedBase):
    """Stock-count correction; reason is mandatory."""

    __tablename__ = "stock_adjustments"

    __table_args__ = (
        Index("idx_adjustment_warehouse", "warehouse_id"),
        Index("idx_adjustment_date", "document_date"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    lines: Mapped[list["AdjustmentLine"]] = relationship(
        back_populates="document",
        order_by="AdjustmentLine.line_no",
        lazy="selectin",
    )


class AdjustmentLine(DocumentLineMixin, Base):
    __tablename__ = "stock_adjustment_lines"

    adjustment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_adjustments.id"), nullable=False
    )
    bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )
    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        String(10), nullable=False
    )

    document: Mapped[Adjustment] = relationship(back_populates="lines")


# =============================================================================
# Backflush
# =============================================================================


class Backflush(DocumentHeaderMixin, TrackedBase):
    """
    Automatic component consumption recorded with a work order completion.

    Lines hold one ISSUE per backflushed BOM component and one
    ASSEMBLY_BUILD receipt of the finished item.
    """

    __tablename__ = "backflushes"

    __table_args__ = (
        Index("idx_backflush_work_order", "work_order_id"),
    )

    work_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("work_orders.id"), nullable=False
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    completed_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    lines: Mapped[list["BackflushLine"]] = relationship(
        back_populates="document",
        order_by="BackflushLine.line_no",
        lazy="selectin",
    )


class BackflushLine(DocumentLineMixin, Base):
    __tablename__ = "backflush_lines"

    backflush_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("backflushes.id"), nullable=False
    )
    bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True
    )
    bom_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bom_lines.id"), nullable=True
    )
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)

    document: Mapped[Backflush] = relationship(back_populates="lines")


# =============================================================================
# Idempotency register
# =============================================================================


class DocumentIdempotency(Base):
    """
    Maps a client-supplied idempotency key to the document it produced.

    One row per key across every document type.  A concurrent duplicate
    submission blocks on the unique index until the first one commits.
    """

    __tablename__ = "document_idempotency"

    idempotency_key: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    voucher_type: Mapped[VoucherType] = mapped_column(String(10), nullable=False)
    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    document_number: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)


DOCUMENT_MODELS: dict[VoucherType, type] = {
    VoucherType.GRN: Grn,
    VoucherType.MIN: Min,
    VoucherType.MRN: Mrn,
    VoucherType.TRANSFER: Transfer,
    VoucherType.ADJUSTMENT: Adjustment,
    VoucherType.BACKFLUSH: Backflush,
}
