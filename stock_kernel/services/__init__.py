"""Services for the stock kernel (write side)."""

from stock_kernel.services.document_number_service import (
    DocumentNumberService,
    format_document_number,
)
from stock_kernel.services.movement_posting_service import (
    MovementPostingService,
    PostingResult,
    PostingStatus,
)
from stock_kernel.services.procurement_service import ProcurementService
from stock_kernel.services.production_service import BomService, WorkOrderService
from stock_kernel.services.registry_service import (
    ReferenceValidator,
    RegistryService,
    ResolvedLocation,
)
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_aggregate import MovementOutcome, StockAggregateStore
from stock_kernel.services.transaction_ledger import LedgerEntrySpec, TransactionLedger

__all__ = [
    "BomService",
    "DocumentNumberService",
    "LedgerEntrySpec",
    "MovementOutcome",
    "MovementPostingService",
    "PostingResult",
    "PostingStatus",
    "ProcurementService",
    "ReferenceValidator",
    "RegistryService",
    "ResolvedLocation",
    "SequenceService",
    "StockAggregateStore",
    "TransactionLedger",
    "WorkOrderService",
    "format_document_number",
]
