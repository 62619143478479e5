"""
MovementPostingService -- canonical entry point for stock-mutation documents.

Responsibility:
    Posts GRN, MIN, MRN, Transfer, Adjustment and Backflush documents.  Each
    posting writes the header and its lines, updates the StockLevel
    aggregate, and appends ledger entries -- all in ONE transaction.

Architecture position:
    Kernel > Services -- imperative shell, owns transaction boundaries.
    Delegates to DocumentNumberService, StockAggregateStore and
    TransactionLedger, which only flush.

Posting flow (every document type):
    1. Idempotency: a known idempotency_key of the same document type
       returns ALREADY_POSTED with the original document; the same key on a
       different document type is a DuplicateDocumentError.
    2. Validate the whole document (references, quantities, mandatory
       fields) before any write.
    3. Allocate the document number from the locked per-prefix-per-year
       counter.
    4. Lock the ledger sequence, then per line: persist the line, apply the
       movement(s) to StockLevel, append the ledger entry.
    5. Mark the header completed and commit.  Any failure rolls back
       everything: lines, stock, ledger and the document number.

Invariants enforced:
    - Atomicity: no partial documents, no orphaned ledger entries.
    - Lock order: document counter -> ledger counter -> StockLevel rows.
    - Transfer symmetry: the outbound and inbound halves of a transfer line
      are applied in the same transaction with the same quantity.

Failure modes (reported as PostingResult, never raised):
    - VALIDATION_FAILED, INSUFFICIENT_STOCK, CONCURRENCY_CONFLICT,
      DUPLICATE_DOCUMENT, NOT_FOUND, POSTING_FAILED.
    Unexpected exceptions are re-raised after rollback.

Audit relevance:
    Every posting is logged with correlation_id, actor_id, voucher_type and
    document_number, plus timing.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    AdjustmentRequest,
    BackflushRequest,
    IssueRequest,
    ReceiptRequest,
    ReturnRequest,
    TransferRequest,
)
from stock_kernel.domain.policy import LedgerPolicy
from stock_kernel.domain.quantities import (
    ZERO,
    extended_cost,
    quantize_stored,
    to_decimal,
    with_wastage,
)
from stock_kernel.exceptions import (
    ConcurrencyConflictError,
    DuplicateDocumentError,
    InsufficientStockError,
    InvalidQuantityError,
    MissingFieldError,
    NotFoundError,
    StockKernelError,
    UnknownReferenceError,
    ValidationError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.documents import (
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
from stock_kernel.models.production import Bom, WorkOrder
from stock_kernel.models.registry import Item
from stock_kernel.services.document_number_service import DocumentNumberService
from stock_kernel.services.registry_service import ReferenceValidator
from stock_kernel.services.stock_aggregate import StockAggregateStore
from stock_kernel.services.transaction_ledger import LedgerEntrySpec, TransactionLedger

logger = get_logger("services.movement_posting")


class PostingStatus(str, Enum):
    """Status of a document posting."""

    POSTED = "posted"
    ALREADY_POSTED = "already_posted"
    VALIDATION_FAILED = "validation_failed"
    INSUFFICIENT_STOCK = "insufficient_stock"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    DUPLICATE_DOCUMENT = "duplicate_document"
    NOT_FOUND = "not_found"
    POSTING_FAILED = "posting_failed"


@dataclass(frozen=True)
class PostingResult:
    """Tagged outcome of a posting; failures carry the error code."""

    status: PostingStatus
    voucher_type: VoucherType
    document_id: UUID | None = None
    document_number: str | None = None
    ledger_entry_ids: tuple[UUID, ...] = ()
    message: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (
            PostingStatus.POSTED,
            PostingStatus.ALREADY_POSTED,
        )


# Most specific first: every validation subclass maps to VALIDATION_FAILED
_STATUS_BY_ERROR: tuple[tuple[type[StockKernelError], PostingStatus], ...] = (
    (InsufficientStockError, PostingStatus.INSUFFICIENT_STOCK),
    (ConcurrencyConflictError, PostingStatus.CONCURRENCY_CONFLICT),
    (DuplicateDocumentError, PostingStatus.DUPLICATE_DOCUMENT),
    (NotFoundError, PostingStatus.NOT_FOUND),
    (ValidationError, PostingStatus.VALIDATION_FAILED),
)

_REFERENCE_LABELS = {
    VoucherType.GRN: "Item Receipt",
    VoucherType.MIN: "Material Issue",
    VoucherType.MRN: "Material Return",
    VoucherType.TRANSFER: "Stock Transfer",
    VoucherType.ADJUSTMENT: "Stock Adjustment",
    VoucherType.BACKFLUSH: "Production Backflush",
}


@dataclass
class _Posting:
    """Mutable state of one document while it is being written."""

    voucher_type: VoucherType
    document_id: UUID
    number: str
    actor: str
    posted_at: datetime
    work_order_id: UUID | None = None
    reference_suffix: str | None = None
    entry_ids: list[UUID] = field(default_factory=list)

    @property
    def reference(self) -> str:
        text = (
            f"{self.voucher_type.value} {self.number} - "
            f"{_REFERENCE_LABELS[self.voucher_type]}"
        )
        if self.reference_suffix:
            text = f"{text}: {self.reference_suffix}"
        return text


@dataclass(frozen=True)
class _Moved:
    quantity: Decimal
    unit_cost: Decimal | None
    entry: LedgerEntry


def _as_decimal(value, field_name: str, line_no: int | None):
    """Coerce a numeric field from the API layer; None stays None."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidQuantityError(value, line_no, field=field_name, malformed=True)
    try:
        result = to_decimal(value)
    except (TypeError, ValueError, ArithmeticError):
        raise InvalidQuantityError(value, line_no, field=field_name, malformed=True) from None
    if not result.is_finite():
        raise InvalidQuantityError(value, line_no, field=field_name, malformed=True)
    return result


def _with_decimal_quantities(request):
    """
    Copy of a request whose quantities and unit costs are Decimal.

    Raises:
        InvalidQuantityError: a value that is not a finite number.
    """
    changes = {}
    if hasattr(request, "completed_quantity"):
        changes["completed_quantity"] = _as_decimal(
            request.completed_quantity, "completed_quantity", None
        )
    lines = getattr(request, "lines", None)
    if lines is not None:
        coerced = []
        for line_no, line in enumerate(lines, start=1):
            numbers = {
                name: _as_decimal(getattr(line, name), name, line_no)
                for name in ("quantity", "unit_cost")
                if hasattr(line, name)
            }
            coerced.append(replace(line, **numbers))
        changes["lines"] = tuple(coerced)
    return replace(request, **changes)


def _positive(quantity: Decimal, line_no: int) -> Decimal:
    if quantity is None or quantity <= ZERO:
        raise InvalidQuantityError(quantity, line_no)
    return quantity


def _required(value: str | None, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise MissingFieldError(field_name)
    return value


def _accepts_completion(work_order: WorkOrder) -> None:
    if work_order.status not in (DocumentStatus.RELEASED, DocumentStatus.IN_PROGRESS):
        raise ValidationError(
            f"Work order {work_order.number} is {work_order.status}, "
            "only released or in-progress orders accept completions",
            field="work_order_id",
        )


class MovementPostingService:
    """
    Posts stock-mutation documents atomically.

    Contract:
        One public method per document type, each taking a request DTO and
        returning a PostingResult.

    Guarantees:
        - auto_commit=True: commit on success, rollback on any failure.
        - auto_commit=False: the posting runs inside a savepoint that is
          released on success and rolled back on failure; the caller
          commits.
        - Exactly-once per idempotency key.
    """

    def __init__(
        self,
        session: Session,
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._policy = policy or LedgerPolicy()
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._numbers = DocumentNumberService(session, self._policy, self._clock)
        self._store = StockAggregateStore(session, self._policy, self._clock)
        self._ledger = TransactionLedger(session, self._clock)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def post_receipt(self, request: ReceiptRequest) -> PostingResult:
        """Goods Receipt Note: +quantity per line into the receiving warehouse."""
        return self._run(
            VoucherType.GRN,
            request.received_by,
            request.idempotency_key,
            request.receipt_date,
            request,
            self._validate_receipt,
            self._write_receipt,
        )

    def post_issue(self, request: IssueRequest) -> PostingResult:
        """Material Issue Note: -quantity per line, optionally for a work order."""
        return self._run(
            VoucherType.MIN,
            request.requested_by,
            request.idempotency_key,
            request.issue_date,
            request,
            self._validate_issue,
            self._write_issue,
        )

    def post_return(self, request: ReturnRequest) -> PostingResult:
        """Material Return Note: +quantity per line back into store."""
        return self._run(
            VoucherType.MRN,
            request.returned_by,
            request.idempotency_key,
            request.return_date,
            request,
            self._validate_return,
            self._write_return,
        )

    def post_transfer(self, request: TransferRequest) -> PostingResult:
        """Transfer: per line, -quantity at the source and +quantity at the target."""
        return self._run(
            VoucherType.TRANSFER,
            request.transferred_by,
            request.idempotency_key,
            request.transfer_date,
            request,
            self._validate_transfer,
            self._write_transfer,
        )

    def post_adjustment(self, request: AdjustmentRequest) -> PostingResult:
        """Stock-count correction: +/-quantity per line, reason mandatory."""
        return self._run(
            VoucherType.ADJUSTMENT,
            request.adjusted_by,
            request.idempotency_key,
            request.adjustment_date,
            request,
            self._validate_adjustment,
            self._write_adjustment,
        )

    def post_backflush(self, request: BackflushRequest) -> PostingResult:
        """
        Record work order output and consume its BOM components.

        Issues ``completed * qty_per_unit * (1 + wastage%/100)`` of every BOM
        line flagged ``backflush_default`` (when the BOM has backflush
        enabled) and receives the finished item into the work order's
        warehouse as ASSEMBLY_BUILD.
        """
        return self._run(
            VoucherType.BACKFLUSH,
            request.completed_by,
            request.idempotency_key,
            request.completion_date,
            request,
            self._validate_backflush,
            self._write_backflush,
        )

    # ------------------------------------------------------------------
    # Transaction envelope
    # ------------------------------------------------------------------

    def _run(
        self,
        voucher_type: VoucherType,
        actor: str,
        idempotency_key: str | None,
        document_date: date | None,
        request: Any,
        validate: Callable[[Any], Any],
        write: Callable[[Any, Any, _Posting], None],
    ) -> PostingResult:
        correlation_id = str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            actor_id=actor,
            voucher_type=voucher_type.value,
        ):
            logger.info(
                "movement_posting_started",
                extra={"idempotency_key": idempotency_key},
            )
            t0 = time.monotonic()
            savepoint = None if self._auto_commit else self._session.begin_nested()

            try:
                result = self._find_existing(voucher_type, idempotency_key)
                if result is None:
                    _required(actor, "actor")
                    request = _with_decimal_quantities(request)
                    plan = validate(request)
                    result = self._allocate_and_write(
                        voucher_type, actor, idempotency_key, document_date, request, plan, write
                    )
                self._finish(savepoint)
                logger.info(
                    "movement_posting_completed",
                    extra={
                        "status": result.status.value,
                        "document_number": result.document_number,
                        "entry_count": len(result.ledger_entry_ids),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return result

            except IntegrityError as exc:
                # A concurrent submission with the same key or number won
                self._abort(savepoint)
                replay = self._replay_after_conflict(voucher_type, idempotency_key)
                if replay is not None:
                    return replay
                return self._failure(
                    voucher_type,
                    DuplicateDocumentError(f"Document could not be stored: {exc.orig}"),
                    t0,
                )

            except StockKernelError as exc:
                self._abort(savepoint)
                return self._failure(voucher_type, exc, t0)

            except Exception:
                self._abort(savepoint)
                logger.error(
                    "movement_posting_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

    def _allocate_and_write(
        self,
        voucher_type: VoucherType,
        actor: str,
        idempotency_key: str | None,
        document_date: date | None,
        request: Any,
        plan: Any,
        write: Callable[[Any, Any, _Posting], None],
    ) -> PostingResult:
        doc_date = document_date or self._clock.today()
        number = self._numbers.next_for(voucher_type.value, doc_date.year)
        with LogContext.bind(document_number=number):
            # INVARIANT: document counter -> ledger counter -> stock rows
            self._ledger.acquire_posting_lock()
            posting = _Posting(
                voucher_type=voucher_type,
                document_id=uuid4(),
                number=number,
                actor=actor,
                posted_at=self._clock.now(),
            )
            if idempotency_key is not None:
                self._session.add(
                    DocumentIdempotency(
                        idempotency_key=idempotency_key,
                        voucher_type=voucher_type.value,
                        document_id=posting.document_id,
                        document_number=number,
                        created_at=posting.posted_at,
                    )
                )
            write(request, plan, posting)
            self._session.flush()
            logger.info(
                "movement_posted",
                extra={"entry_count": len(posting.entry_ids)},
            )
        return PostingResult(
            status=PostingStatus.POSTED,
            voucher_type=voucher_type,
            document_id=posting.document_id,
            document_number=number,
            ledger_entry_ids=tuple(posting.entry_ids),
        )

    def _finish(self, savepoint) -> None:
        if savepoint is not None:
            savepoint.commit()
        else:
            self._session.commit()

    def _abort(self, savepoint) -> None:
        if savepoint is not None:
            if savepoint.is_active:
                savepoint.rollback()
        else:
            self._session.rollback()

    def _failure(
        self,
        voucher_type: VoucherType,
        exc: StockKernelError,
        t0: float,
    ) -> PostingResult:
        status = PostingStatus.POSTING_FAILED
        for error_type, mapped in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status = mapped
                break
        logger.warning(
            "movement_posting_rejected",
            extra={
                "status": status.value,
                "error_code": exc.code,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
            exc_info=True,
        )
        document_number = getattr(exc, "existing_number", None)
        return PostingResult(
            status=status,
            voucher_type=voucher_type,
            document_number=document_number,
            message=str(exc),
            error_code=exc.code,
        )

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------

    def _find_existing(
        self, voucher_type: VoucherType, idempotency_key: str | None
    ) -> PostingResult | None:
        if idempotency_key is None:
            return None
        record = self._session.execute(
            select(DocumentIdempotency).where(
                DocumentIdempotency.idempotency_key == idempotency_key
            )
        ).scalar_one_or_none()
        if record is None:
            return None
        if record.voucher_type != voucher_type.value:
            raise DuplicateDocumentError(
                f"Idempotency key '{idempotency_key}' already used by "
                f"{record.voucher_type} {record.document_number}",
                existing_number=record.document_number,
                existing_type=record.voucher_type,
            )
        entry_ids = self._session.execute(
            select(LedgerEntry.id)
            .where(LedgerEntry.document_id == record.document_id)
            .order_by(LedgerEntry.seq)
        ).scalars().all()
        logger.info(
            "movement_already_posted",
            extra={"document_number": record.document_number},
        )
        return PostingResult(
            status=PostingStatus.ALREADY_POSTED,
            voucher_type=voucher_type,
            document_id=record.document_id,
            document_number=record.document_number,
            ledger_entry_ids=tuple(entry_ids),
            message="Document already posted",
        )

    def _replay_after_conflict(
        self, voucher_type: VoucherType, idempotency_key: str | None
    ) -> PostingResult | None:
        try:
            result = self._find_existing(voucher_type, idempotency_key)
        except DuplicateDocumentError as exc:
            if self._auto_commit:
                self._abort(None)
            return self._failure(voucher_type, exc, time.monotonic())
        if result is not None and self._auto_commit:
            self._session.commit()
        return result

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _move(
        self,
        posting: _Posting,
        *,
        transaction_type: TransactionType,
        item: Item,
        warehouse_id: UUID,
        bin_id: UUID | None,
        quantity: Decimal,
        inbound: bool,
        uom: str,
        unit_cost: Decimal | None = None,
        batch_number: str | None = None,
        serial_number: str | None = None,
    ) -> _Moved:
        """Apply one movement to the aggregate and append its ledger entry."""
        delta = quantity if inbound else -quantity
        outcome = self._store.apply(
            item.id, warehouse_id, bin_id, delta, unit_cost if inbound else None
        )
        moved = abs(outcome.applied_delta)
        cost = unit_cost if inbound else outcome.level.average_cost
        entry = self._ledger.append(
            LedgerEntrySpec(
                transaction_type=transaction_type,
                voucher_number=posting.number,
                document_id=posting.document_id,
                item_id=item.id,
                warehouse_id=warehouse_id,
                bin_id=bin_id,
                quantity_in=moved if inbound else ZERO,
                quantity_out=ZERO if inbound else moved,
                uom=uom,
                created_by=posting.actor,
                unit_cost=cost,
                work_order_id=posting.work_order_id,
                batch_number=batch_number,
                serial_number=serial_number,
                reference=posting.reference,
                transaction_at=posting.posted_at,
            ),
            outcome.level,
        )
        posting.entry_ids.append(entry.id)
        return _Moved(quantity=moved, unit_cost=cost, entry=entry)

    def _locked(self, model, row_id: UUID):
        """Re-read a row under FOR UPDATE, replacing any stale identity-map state."""
        # Flushed first so the refresh cannot discard this document's own changes
        self._session.flush()
        row = self._session.get(model, row_id, with_for_update=True, populate_existing=True)
        if row is None:
            raise NotFoundError(model.__name__, row_id)
        return row

    def _complete(self, header, posting: _Posting) -> None:
        header.status = DocumentStatus.COMPLETED
        header.posted_at = posting.posted_at
        self._session.flush()

    def _uom(self, line_uom: str | None, item: Item) -> str:
        return line_uom or item.uom or self._policy.default_uom

    def _work_order(self, work_order_id: UUID | None) -> WorkOrder | None:
        if work_order_id is None:
            return None
        work_order = self._session.get(WorkOrder, work_order_id)
        if work_order is None:
            raise UnknownReferenceError("work_order", work_order_id)
        return work_order

    def _check_lines(self, lines) -> None:
        if not lines:
            raise MissingFieldError("lines")

    # ------------------------------------------------------------------
    # GRN
    # ------------------------------------------------------------------

    def _validate_receipt(self, request: ReceiptRequest) -> list[tuple]:
        refs = ReferenceValidator(self._session)
        refs.warehouse(request.warehouse_id)
        refs.supplier(request.supplier_id)
        if request.purchase_order_id is not None:
            if self._session.get(PurchaseOrder, request.purchase_order_id) is None:
                raise UnknownReferenceError("purchase_order", request.purchase_order_id)
        self._check_lines(request.lines)

        plan = []
        for line_no, line in enumerate(request.lines, start=1):
            item = refs.item(line.item_id)
            refs.bin(line.bin_id, request.warehouse_id)
            _positive(line.quantity, line_no)
            if line.unit_cost is not None and line.unit_cost < ZERO:
                raise ValidationError(
                    f"Unit cost cannot be negative on line {line_no}", field="unit_cost"
                )
            po_line = None
            if line.po_line_id is not None:
                po_line = self._session.get(PurchaseOrderLine, line.po_line_id)
                if po_line is None:
                    raise UnknownReferenceError("purchase_order_line", line.po_line_id)
                if po_line.item_id != line.item_id:
                    raise ValidationError(
                        f"Purchase order line {line.po_line_id} is for another item",
                        field="po_line_id",
                    )
                if (
                    request.purchase_order_id is not None
                    and po_line.purchase_order_id != request.purchase_order_id
                ):
                    raise ValidationError(
                        f"Purchase order line {line.po_line_id} belongs to another order",
                        field="po_line_id",
                    )
            plan.append((line_no, line, item, po_line))
        return plan

    def _write_receipt(self, request: ReceiptRequest, plan, posting: _Posting) -> None:
        header = Grn(
            id=posting.document_id,
            number=posting.number,
            status=DocumentStatus.PENDING,
            document_date=request.receipt_date or self._clock.today(),
            idempotency_key=request.idempotency_key,
            warehouse_id=request.warehouse_id,
            supplier_id=request.supplier_id,
            purchase_order_id=request.purchase_order_id,
            invoice_number=request.invoice_number,
            delivery_note=request.delivery_note,
            notes=request.notes,
            created_by=posting.actor,
        )
        self._session.add(header)

        for line_no, line, item, po_line in plan:
            uom = self._uom(line.uom, item)
            self._session.add(
                GrnLine(
                    grn_id=header.id,
                    line_no=line_no,
                    item_id=item.id,
                    quantity=line.quantity,
                    uom=uom,
                    bin_id=line.bin_id,
                    unit_cost=line.unit_cost,
                    total_cost=extended_cost(line.quantity, line.unit_cost),
                    po_line_id=line.po_line_id,
                    batch_number=line.batch_number,
                    serial_number=line.serial_number,
                    notes=line.notes,
                )
            )
            self._move(
                posting,
                transaction_type=TransactionType.GRN,
                item=item,
                warehouse_id=request.warehouse_id,
                bin_id=line.bin_id,
                quantity=line.quantity,
                inbound=True,
                uom=uom,
                unit_cost=line.unit_cost,
                batch_number=line.batch_number,
                serial_number=line.serial_number,
            )
            if po_line is not None:
                po_line = self._locked(PurchaseOrderLine, po_line.id)
                po_line.received_quantity = po_line.received_quantity + line.quantity

        self._complete(header, posting)

    # ------------------------------------------------------------------
    # MIN
    # ------------------------------------------------------------------

    def _validate_issue(self, request: IssueRequest) -> list[tuple]:
        refs = ReferenceValidator(self._session)
        refs.warehouse(request.warehouse_id)
        self._work_order(request.work_order_id)
        self._check_lines(request.lines)

        plan = []
        for line_no, line in enumerate(request.lines, start=1):
            item = refs.item(line.item_id)
            refs.bin(line.bin_id, request.warehouse_id)
            _positive(line.quantity, line_no)
            plan.append((line_no, line, item))
        return plan

    def _write_issue(self, request: IssueRequest, plan, posting: _Posting) -> None:
        posting.work_order_id = request.work_order_id
        header = Min(
            id=posting.document_id,
            number=posting.number,
            status=DocumentStatus.PENDING,
            document_date=request.issue_date or self._clock.today(),
            idempotency_key=request.idempotency_key,
            warehouse_id=request.warehouse_id,
            work_order_id=request.work_order_id,
            department=request.department,
            purpose=request.purpose,
            notes=request.notes,
            created_by=posting.actor,
        )
        self._session.add(header)

        for line_no, line, item in plan:
            uom = self._uom(line.uom, item)
            self._session.add(
                MinLine(
                    min_id=header.id,
                    line_no=line_no,
                    item_id=item.id,
                    quantity=line.quantity,
                    uom=uom,
                    bin_id=line.bin_id,
                    batch_number=line.batch_number,
                    serial_number=line.serial_number,
                    notes=line.notes,
                )
            )
            self._move(
                posting,
                transaction_type=TransactionType.ISSUE,
                item=item,
                warehouse_id=request.warehouse_id,
                bin_id=line.bin_id,
                quantity=line.quantity,
                inbound=False,
                uom=uom,
                batch_number=line.batch_number,
                serial_number=line.serial_number,
            )

        self._complete(header, posting)

    # ------------------------------------------------------------------
    # MRN
    # ------------------------------------------------------------------

    def _validate_return(self, request: ReturnRequest) -> tuple[UUID | None, list[tuple]]:
        refs = ReferenceValidator(self._session)
        refs.warehouse(request.warehouse_id)
        work_order_id = request.work_order_id
        if request.min_id is not None:
            issue = self._session.get(Min, request.min_id)
            if issue is None:
                raise UnknownReferenceError("min", request.min_id)
            work_order_id = work_order_id or issue.work_order_id
        self._work_order(work_order_id)
        self._check_lines(request.lines)

        plan = []
        for line_no, line in enumerate(request.lines, start=1):
            item = refs.item(line.item_id)
            refs.bin(line.bin_id, request.warehouse_id)
            _positive(line.quantity, line_no)
            plan.append((line_no, line, item))
        return work_order_id, plan

    def _write_return(self, request: ReturnRequest, plan, posting: _Posting) -> None:
        work_order_id, lines = plan
        posting.work_order_id = work_order_id
        header = Mrn(
            id=posting.document_id,
            number=posting.number,
            status=DocumentStatus.PENDING,
            document_date=request.return_date or self._clock.today(),
            idempotency_key=request.idempotency_key,
            warehouse_id=request.warehouse_id,
            min_id=request.min_id,
            work_order_id=work_order_id,
            reason=request.reason,
            notes=request.notes,
            created_by=posting.actor,
        )
        self._session.add(header)

        for line_no, line, item in lines:
            uom = self._uom(line.uom, item)
            self._session.add(
                MrnLine(
                    mrn_id=header.id,
                    line_no=line_no,
                    item_id=item.id,
                    quantity=line.quantity,
                    uom=uom,
                    bin_id=line.bin_id,
                    batch_number=line.batch_number,
                    serial_number=line.serial_number,
                    notes=line.notes,
                )
            )
            self._move(
                posting,
                transaction_type=TransactionType.RETURN,
                item=item,
                warehouse_id=request.warehouse_id,
                bin_id=line.bin_id,
                quantity=line.quantity,
                inbound=True,
                uom=uom,
                batch_number=line.batch_number,
                serial_number=line.serial_number,
            )

        self._complete(header, posting)

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    def _validate_transfer(self, request: TransferRequest) -> list[tuple]:
        refs = ReferenceValidator(self._session)
        refs.warehouse(request.from_warehouse_id)
        refs.warehouse(request.to_warehouse_id)
        self._check_lines(request.lines)

        plan = []
        for line_no, line in enumerate(request.lines, start=1):
            item = refs.item(line.item_id)
            refs.bin(line.from_bin_id, request.from_warehouse_id)
            refs.bin(line.to_bin_id, request.to_warehouse_id)
            _positive(line.quantity, line_no)
            if (
                request.from_warehouse_id == request.to_warehouse_id
                and line.from_bin_id == line.to_bin_id
            ):
                raise ValidationError(
                    f"Line {line_no} transfers to its own location",
                    field="to_bin_id",
                )
            plan.append((line_no, line, item))
        return plan

    def _write_transfer(self, request: TransferRequest, plan, posting: _Posting) -> None:
        header = Transfer(
            id=posting.document_id,
            number=posting.number,
            status=DocumentStatus.PENDING,
            document_date=request.transfer_date or self._clock.today(),
            idempotency_key=request.idempotency_key,
            from_warehouse_id=request.from_warehouse_id,
            to_warehouse_id=request.to_warehouse_id,
            notes=request.notes,
            created_by=posting.actor,
        )
        self._session.add(header)

        for line_no, line, item in plan:
            uom = self._uom(line.uom, item)
            self._session.add(
                TransferLine(
                    transfer_id=header.id,
                    line_no=line_no,
                    item_id=item.id,
                    quantity=line.quantity,
                    uom=uom,
                    from_bin_id=line.from_bin_id,
                    to_bin_id=line.to_bin_id,
                    batch_number=line.batch_number,
                    serial_number=line.serial_number,
                    notes=line.notes,
                )
            )
            out = self._move(
                posting,
                transaction_type=TransactionType.TRANSFER,
                item=item,
                warehouse_id=request.from_warehouse_id,
                bin_id=line.from_bin_id,
                quantity=line.quantity,
                inbound=False,
                uom=uom,
                batch_number=line.batch_number,
                serial_number=line.serial_number,
            )
            # INVARIANT: the inbound half moves exactly what left the source
            if out.quantity > ZERO:
                self._move(
                    posting,
                    transaction_type=TransactionType.TRANSFER,
                    item=item,
                    warehouse_id=request.to_warehouse_id,
                    bin_id=line.to_bin_id,
                    quantity=out.quantity,
                    inbound=True,
                    uom=uom,
                    unit_cost=out.unit_cost,
                    batch_number=line.batch_number,
                    serial_number=line.serial_number,
                )

        self._complete(header, posting)

    # ------------------------------------------------------------------
    # Adjustment
    # ------------------------------------------------------------------

    def _validate_adjustment(self, request: AdjustmentRequest) -> list[tuple]:
        refs = ReferenceValidator(self._session)
        refs.warehouse(request.warehouse_id)
        _required(request.reason, "reason")
        self._check_lines(request.lines)

        plan = []
        for line_no, line in enumerate(request.lines, start=1):
            item = refs.item(line.item_id)
            refs.bin(line.bin_id, request.warehouse_id)
            _positive(line.quantity, line_no)
            try:
                direction = AdjustmentType(line.adjustment_type)
            except ValueError:
                raise ValidationError(
                    f"Line {line_no} adjustment_type must be 'increase' or 'decrease', "
                    f"got '{line.adjustment_type}'",
                    field="adjustment_type",
                ) from None
            plan.append((line_no, line, item, direction))
        return plan

    def _write_adjustment(self, request: AdjustmentRequest, plan, posting: _Posting) -> None:
        posting.reference_suffix = request.reason
        header = Adjustment(
            id=posting.document_id,
            number=posting.number,
            status=DocumentStatus.PENDING,
            document_date=request.adjustment_date or self._clock.today(),
            idempotency_key=request.idempotency_key,
            warehouse_id=request.warehouse_id,
            reason=request.reason,
            notes=request.notes,
            created_by=posting.actor,
        )
        self._session.add(header)

        for line_no, line, item, direction in plan:
            uom = self._uom(line.uom, item)
            self._session.add(
                AdjustmentLine(
                    adjustment_id=header.id,
                    line_no=line_no,
                    item_id=item.id,
                    quantity=line.quantity,
                    uom=uom,
                    bin_id=line.bin_id,
                    adjustment_type=direction.value,
                    batch_number=line.batch_number,
                    serial_number=line.serial_number,
                    notes=line.notes,
                )
            )
            self._move(
                posting,
                transaction_type=TransactionType.ADJUST,
                item=item,
                warehouse_id=request.warehouse_id,
                bin_id=line.bin_id,
                quantity=line.quantity,
                inbound=direction is AdjustmentType.INCREASE,
                uom=uom,
                batch_number=line.batch_number,
                serial_number=line.serial_number,
            )

        self._complete(header, posting)

    # ------------------------------------------------------------------
    # Backflush
    # ------------------------------------------------------------------

    def _resolve_bom(self, work_order: WorkOrder) -> Bom | None:
        if work_order.bom_id is not None:
            return self._session.get(Bom, work_order.bom_id)
        return self._session.execute(
            select(Bom).where(
                Bom.parent_item_id == work_order.item_id,
                Bom.is_active.is_(True),
            )
        ).scalar_one_or_none()

    def _validate_backflush(self, request: BackflushRequest):
        work_order = self._session.get(WorkOrder, request.work_order_id)
        if work_order is None:
            raise NotFoundError("WorkOrder", request.work_order_id)
        _accepts_completion(work_order)
        _positive(request.completed_quantity, 1)

        refs = ReferenceValidator(self._session)
        refs.warehouse(work_order.warehouse_id)
        refs.bin(request.component_bin_id, work_order.warehouse_id)
        refs.bin(request.output_bin_id, work_order.warehouse_id)
        finished = refs.item(work_order.item_id)

        components = []
        bom = self._resolve_bom(work_order)
        if bom is not None and bom.backflush_enabled:
            for bom_line in bom.lines:
                if not bom_line.backflush_default:
                    continue
                quantity = quantize_stored(
                    request.completed_quantity
                    * with_wastage(bom_line.quantity, bom_line.wastage_percent)
                )
                if quantity <= ZERO:
                    continue
                components.append((bom_line, refs.item(bom_line.component_item_id), quantity))
        return work_order, finished, components

    def _write_backflush(self, request: BackflushRequest, plan, posting: _Posting) -> None:
        work_order, finished, components = plan
        # Validation read the row unlocked; a concurrent completion or
        # cancellation may have committed since
        work_order = self._locked(WorkOrder, work_order.id)
        _accepts_completion(work_order)
        posting.work_order_id = work_order.id
        header = Backflush(
            id=posting.document_id,
            number=posting.number,
            status=DocumentStatus.PENDING,
            document_date=request.completion_date or self._clock.today(),
            idempotency_key=request.idempotency_key,
            work_order_id=work_order.id,
            warehouse_id=work_order.warehouse_id,
            completed_quantity=request.completed_quantity,
            notes=request.notes,
            created_by=posting.actor,
        )
        self._session.add(header)

        line_no = 0
        consumed_value = ZERO
        for bom_line, item, quantity in components:
            line_no += 1
            uom = self._uom(bom_line.uom, item)
            self._session.add(
                BackflushLine(
                    backflush_id=header.id,
                    line_no=line_no,
                    item_id=item.id,
                    quantity=quantity,
                    uom=uom,
                    bin_id=request.component_bin_id,
                    bom_line_id=bom_line.id,
                    transaction_type=TransactionType.ISSUE.value,
                )
            )
            moved = self._move(
                posting,
                transaction_type=TransactionType.ISSUE,
                item=item,
                warehouse_id=work_order.warehouse_id,
                bin_id=request.component_bin_id,
                quantity=quantity,
                inbound=False,
                uom=uom,
            )
            consumed_value += moved.quantity * (moved.unit_cost or ZERO)

        # Finished goods carry the consumed component value as their cost
        unit_cost = None
        if components:
            unit_cost = quantize_stored(consumed_value / request.completed_quantity)
        line_no += 1
        uom = self._uom(None, finished)
        self._session.add(
            BackflushLine(
                backflush_id=header.id,
                line_no=line_no,
                item_id=finished.id,
                quantity=request.completed_quantity,
                uom=uom,
                bin_id=request.output_bin_id,
                transaction_type=TransactionType.ASSEMBLY_BUILD.value,
            )
        )
        self._move(
            posting,
            transaction_type=TransactionType.ASSEMBLY_BUILD,
            item=finished,
            warehouse_id=work_order.warehouse_id,
            bin_id=request.output_bin_id,
            quantity=request.completed_quantity,
            inbound=True,
            uom=uom,
            unit_cost=unit_cost,
        )

        work_order.completed_quantity = (
            work_order.completed_quantity + request.completed_quantity
        )
        work_order.status = (
            DocumentStatus.COMPLETED
            if work_order.completed_quantity >= work_order.planned_quantity
            else DocumentStatus.IN_PROGRESS
        )
        work_order.updated_by = posting.actor
        self._complete(header, posting)
        logger.info(
            "work_order_completion_recorded",
            extra={
                "work_order_number": work_order.number,
                "completed_quantity": request.completed_quantity,
                "component_count": len(components),
            },
        )
