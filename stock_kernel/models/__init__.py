"""Persistence models for the stock kernel."""

from stock_kernel.models.documents import (
    DOCUMENT_MODELS,
    Adjustment,
    AdjustmentLine,
    AdjustmentType,
    Backflush,
    BackflushLine,
    DocumentIdempotency,
    DocumentStatus,
    Grn,
    GrnLine,
    Min,
    MinLine,
    Mrn,
    MrnLine,
    Transfer,
    TransferLine,
    VoucherType,
)
from stock_kernel.models.ledger import LedgerEntry, TransactionType
from stock_kernel.models.procurement import PurchaseOrder, PurchaseOrderLine
from stock_kernel.models.production import Bom, BomLine, WorkOrder
from stock_kernel.models.registry import Bin, Item, Supplier, Warehouse
from stock_kernel.models.sequence import SequenceCounter
from stock_kernel.models.stock_level import UNBINNED_KEY, StockLevel, bin_key_for

__all__ = [
    "Item",
    "Warehouse",
    "Bin",
    "Supplier",
    "StockLevel",
    "UNBINNED_KEY",
    "bin_key_for",
    "LedgerEntry",
    "TransactionType",
    "SequenceCounter",
    "DocumentStatus",
    "VoucherType",
    "AdjustmentType",
    "DocumentIdempotency",
    "DOCUMENT_MODELS",
    "Grn",
    "GrnLine",
    "Min",
    "MinLine",
    "Mrn",
    "MrnLine",
    "Transfer",
    "TransferLine",
    "Adjustment",
    "AdjustmentLine",
    "Backflush",
    "BackflushLine",
    "Bom",
    "BomLine",
    "WorkOrder",
    "PurchaseOrder",
    "PurchaseOrderLine",
]
