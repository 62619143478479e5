"""
Request DTOs handed to the posting service.

Frozen dataclasses describing a document submission as it arrives from the
(external) API layer: header fields plus ordered lines.  No I/O and no
validation against the database happens here; ``MovementPostingService``
validates the whole request before it writes anything.

The acting user (``received_by``, ``requested_by``, ...) is an opaque id
supplied by the auth layer and threaded into headers and ledger entries.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class DocumentLineInput:
    """One line of a receipt, issue or return."""

    item_id: UUID
    quantity: Decimal
    bin_id: UUID | None = None
    unit_cost: Decimal | None = None
    uom: str | None = None
    batch_number: str | None = None
    serial_number: str | None = None
    po_line_id: UUID | None = None
    notes: str | None = None


@dataclass(frozen=True)
class TransferLineInput:
    item_id: UUID
    quantity: Decimal
    from_bin_id: UUID | None = None
    to_bin_id: UUID | None = None
    uom: str | None = None
    batch_number: str | None = None
    serial_number: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class AdjustmentLineInput:
    item_id: UUID
    quantity: Decimal
    adjustment_type: str  # "increase" or "decrease"
    bin_id: UUID | None = None
    uom: str | None = None
    batch_number: str | None = None
    serial_number: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ReceiptRequest:
    """Goods Receipt Note submission."""

    warehouse_id: UUID
    lines: tuple[DocumentLineInput, ...]
    received_by: str
    supplier_id: UUID | None = None
    purchase_order_id: UUID | None = None
    receipt_date: date | None = None
    invoice_number: str | None = None
    delivery_note: str | None = None
    notes: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class IssueRequest:
    """Material Issue Note submission."""

    warehouse_id: UUID
    lines: tuple[DocumentLineInput, ...]
    requested_by: str
    work_order_id: UUID | None = None
    department: str | None = None
    purpose: str | None = None
    issue_date: date | None = None
    notes: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class ReturnRequest:
    """Material Return Note submission."""

    warehouse_id: UUID
    lines: tuple[DocumentLineInput, ...]
    returned_by: str
    min_id: UUID | None = None
    work_order_id: UUID | None = None
    reason: str | None = None
    return_date: date | None = None
    notes: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class TransferRequest:
    from_warehouse_id: UUID
    to_warehouse_id: UUID
    lines: tuple[TransferLineInput, ...]
    transferred_by: str
    transfer_date: date | None = None
    notes: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class AdjustmentRequest:
    warehouse_id: UUID
    reason: str
    lines: tuple[AdjustmentLineInput, ...]
    adjusted_by: str
    adjustment_date: date | None = None
    notes: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class BackflushRequest:
    """Work order completion that consumes BOM components automatically."""

    work_order_id: UUID
    completed_quantity: Decimal
    completed_by: str
    component_bin_id: UUID | None = None
    output_bin_id: UUID | None = None
    completion_date: date | None = None
    notes: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class BomLineInput:
    component_item_id: UUID
    quantity: Decimal
    wastage_percent: Decimal = Decimal("0")
    backflush_default: bool = True
    uom: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PurchaseOrderLineInput:
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal = Decimal("0")
    uom: str | None = None
