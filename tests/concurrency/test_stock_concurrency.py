"""
Concurrency tests for stock postings.

Each thread posts through its own session on its own connection, and every
posting commits for real.  Verifies:
- No lost updates: N concurrent single-unit issues reduce stock by exactly N
- No oversell: with fewer units than requests, exactly the available units
  are issued and the rest fail with INSUFFICIENT_STOCK
- Gap-free, duplicate-free document numbers under contention
- Exactly-once posting for concurrent submissions with one idempotency key
- Concurrent first touch of a location creates a single StockLevel row
- Purchase order lines and work orders advance once per posting

Run with: pytest tests/concurrency/test_stock_concurrency.py -v
Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.dtos import (
    DocumentLineInput,
    IssueRequest,
    PurchaseOrderLineInput,
    ReceiptRequest,
)
from stock_kernel.domain.policy import LedgerPolicy
from stock_kernel.models.documents import DocumentStatus
from stock_kernel.models.ledger import LedgerEntry
from stock_kernel.models.procurement import PurchaseOrderLine
from stock_kernel.models.production import WorkOrder
from stock_kernel.models.stock_level import StockLevel
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.movement_posting_service import (
    MovementPostingService,
    PostingStatus,
)
from stock_kernel.services.procurement_service import ProcurementService
from stock_kernel.services.production_service import WorkOrderService
from stock_kernel.services.registry_service import RegistryService
from tests.conftest import TEST_ACTOR

pytestmark = pytest.mark.slow_locks

THREADS = 10


@pytest.fixture
def stocked(session_factory):
    """
    Commit an item and a warehouse (and optionally opening stock) through a
    real session, returning a seeding helper.
    """

    def _seed(opening: str | None = None):
        sess = session_factory()
        try:
            registry = RegistryService(sess)
            item = registry.create_item("CONC-ITEM", "Contended item", TEST_ACTOR)
            warehouse = registry.create_warehouse("CONC-WH", "Contended store", TEST_ACTOR)
            sess.commit()
            if opening is not None:
                result = MovementPostingService(sess, LedgerPolicy(), DeterministicClock()).post_receipt(
                    ReceiptRequest(
                        warehouse_id=warehouse.id,
                        lines=(DocumentLineInput(item_id=item.id, quantity=Decimal(opening)),),
                        received_by=TEST_ACTOR,
                    )
                )
                assert result.status == PostingStatus.POSTED
            return item.id, warehouse.id
        finally:
            sess.close()

    return _seed


def _run_concurrently(session_factory, count, action):
    """Run ``action(session, index)`` in ``count`` threads released together."""
    barrier = Barrier(count)

    def worker(index):
        sess = session_factory()
        try:
            barrier.wait(timeout=30)
            return action(sess, index)
        finally:
            sess.close()

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(worker, range(count)))


def _poster(sess):
    return MovementPostingService(sess, LedgerPolicy(), DeterministicClock())


def _issue_one(item_id, warehouse_id):
    def action(sess, index):
        return _poster(sess).post_issue(
            IssueRequest(
                warehouse_id=warehouse_id,
                lines=(DocumentLineInput(item_id=item_id, quantity=Decimal("1")),),
                requested_by=f"{TEST_ACTOR}-{index}",
            )
        )

    return action


def _receive_one(item_id, warehouse_id, idempotency_key=None):
    def action(sess, index):
        return _poster(sess).post_receipt(
            ReceiptRequest(
                warehouse_id=warehouse_id,
                lines=(DocumentLineInput(item_id=item_id, quantity=Decimal("1")),),
                received_by=f"{TEST_ACTOR}-{index}",
                idempotency_key=idempotency_key,
            )
        )

    return action


class TestNoLostUpdates:
    def test_concurrent_issues_each_take_one_unit(self, session_factory, stocked):
        item_id, warehouse_id = stocked(opening=str(THREADS))

        results = _run_concurrently(session_factory, THREADS, _issue_one(item_id, warehouse_id))

        assert [r.status for r in results] == [PostingStatus.POSTED] * THREADS

        check = session_factory()
        level = StockSelector(check).get_level(item_id, warehouse_id)
        assert level.quantity == Decimal("0")
        assert level.version == THREADS + 2  # creation, opening receipt, N issues

        issues = [e for e in LedgerSelector(check).query(item_id=item_id) if e.quantity_out > 0]
        # Each issue saw a distinct prior balance
        assert sorted(e.running_balance for e in issues) == [Decimal(n) for n in range(THREADS)]
        assert LedgerSelector(check).verify_against_aggregate() == []

    def test_oversubscribed_issues_never_oversell(self, session_factory, stocked):
        available = 4
        item_id, warehouse_id = stocked(opening=str(available))

        results = _run_concurrently(session_factory, THREADS, _issue_one(item_id, warehouse_id))

        statuses = [r.status for r in results]
        assert statuses.count(PostingStatus.POSTED) == available
        assert statuses.count(PostingStatus.INSUFFICIENT_STOCK) == THREADS - available

        check = session_factory()
        assert StockSelector(check).on_hand(item_id) == Decimal("0")
        assert LedgerSelector(check).verify_against_aggregate() == []


class TestDocumentNumbers:
    def test_concurrent_receipts_get_gap_free_numbers(self, session_factory, stocked):
        item_id, warehouse_id = stocked()

        results = _run_concurrently(session_factory, THREADS, _receive_one(item_id, warehouse_id))

        numbers = sorted(r.document_number for r in results)
        assert numbers == [f"GRN-2024-{n:04d}" for n in range(1, THREADS + 1)]

        check = session_factory()
        seqs = check.execute(select(LedgerEntry.seq).order_by(LedgerEntry.seq)).scalars().all()
        assert len(seqs) == len(set(seqs)) == THREADS


class TestConcurrentFirstTouch:
    def test_single_row_for_new_location(self, session_factory, stocked):
        item_id, warehouse_id = stocked()

        _run_concurrently(session_factory, THREADS, _receive_one(item_id, warehouse_id))

        check = session_factory()
        rows = check.execute(
            select(func.count()).select_from(StockLevel).where(StockLevel.item_id == item_id)
        ).scalar_one()
        assert rows == 1
        assert StockSelector(check).on_hand(item_id) == Decimal(THREADS)


class TestConcurrentIdempotency:
    def test_same_key_posts_once(self, session_factory, stocked):
        item_id, warehouse_id = stocked()

        results = _run_concurrently(
            session_factory, THREADS, _receive_one(item_id, warehouse_id, "dup-grn-1")
        )

        statuses = [r.status for r in results]
        assert statuses.count(PostingStatus.POSTED) == 1
        assert statuses.count(PostingStatus.ALREADY_POSTED) == THREADS - 1
        assert len({r.document_number for r in results}) == 1

        check = session_factory()
        assert StockSelector(check).on_hand(item_id) == Decimal("1")


class TestConcurrentDocumentProgress:
    def test_po_line_counts_every_receipt(self, session_factory, stocked):
        item_id, warehouse_id = stocked()
        sess = session_factory()
        try:
            supplier = RegistryService(sess).create_supplier("CONC-SUP", "Contended supplier", TEST_ACTOR)
            order = ProcurementService(sess, clock=DeterministicClock()).create_purchase_order(
                supplier.id,
                [PurchaseOrderLineInput(item_id=item_id, quantity=Decimal(THREADS))],
                TEST_ACTOR,
            )
            supplier_id, order_id, po_line_id = supplier.id, order.id, order.lines[0].id
            sess.commit()
        finally:
            sess.close()

        def receive_against_order(sess, index):
            return _poster(sess).post_receipt(
                ReceiptRequest(
                    warehouse_id=warehouse_id,
                    lines=(
                        DocumentLineInput(item_id=item_id, quantity=Decimal("1"), po_line_id=po_line_id),
                    ),
                    received_by=f"{TEST_ACTOR}-{index}",
                    supplier_id=supplier_id,
                    purchase_order_id=order_id,
                )
            )

        results = _run_concurrently(session_factory, THREADS, receive_against_order)

        assert [r.status for r in results] == [PostingStatus.POSTED] * THREADS
        check = session_factory()
        po_line = check.get(PurchaseOrderLine, po_line_id)
        assert po_line.received_quantity == Decimal(THREADS)
        assert po_line.outstanding_quantity == Decimal("0")

    def test_work_order_never_over_completes(self, session_factory, stocked):
        planned = 3
        item_id, warehouse_id = stocked()
        sess = session_factory()
        try:
            work_orders = WorkOrderService(sess, LedgerPolicy(), DeterministicClock())
            work_order = work_orders.create(item_id, warehouse_id, Decimal(planned), TEST_ACTOR)
            work_orders.release(work_order.id, TEST_ACTOR)
            work_order_id = work_order.id
            sess.commit()
        finally:
            sess.close()

        def complete_one(sess, index):
            return WorkOrderService(sess, LedgerPolicy(), DeterministicClock()).record_completion(
                work_order_id, Decimal("1"), f"{TEST_ACTOR}-{index}"
            )

        results = _run_concurrently(session_factory, planned + 2, complete_one)

        statuses = [r.status for r in results]
        assert statuses.count(PostingStatus.POSTED) == planned
        assert statuses.count(PostingStatus.VALIDATION_FAILED) == 2

        check = session_factory()
        work_order = check.get(WorkOrder, work_order_id)
        assert work_order.completed_quantity == Decimal(planned)
        assert work_order.status == DocumentStatus.COMPLETED
        assert StockSelector(check).on_hand(item_id) == Decimal(planned)
