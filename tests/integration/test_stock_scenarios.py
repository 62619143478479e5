"""
End-to-end stock scenarios: receipt, issue against a work order, return,
transfer between warehouses, over-adjustment and concurrent PO numbering.

The scenarios build on each other, so each test replays the earlier steps
through the received -> issued -> returned -> transferred fixture chain.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import select

from stock_kernel.domain.dtos import (
    AdjustmentLineInput,
    AdjustmentRequest,
    DocumentLineInput,
    IssueRequest,
    ReturnRequest,
    TransferLineInput,
    TransferRequest,
)
from stock_kernel.models.ledger import LedgerEntry, TransactionType
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.document_number_service import DocumentNumberService
from stock_kernel.services.movement_posting_service import PostingStatus
from stock_kernel.services.production_service import WorkOrderService
from tests.conftest import TEST_ACTOR


@pytest.fixture
def work_order(session, make_item, warehouse, deterministic_clock):
    assembly = make_item("FRAME-001")
    return WorkOrderService(session, clock=deterministic_clock).create(
        item_id=assembly.id,
        warehouse_id=warehouse.id,
        planned_quantity=Decimal("10"),
        created_by=TEST_ACTOR,
    )


def _ledger(session, result):
    return LedgerSelector(session).entries_for_document(result.document_id)


class TestScenarioReceipt:
    def test_grn_into_empty_bin(self, session, receive, item, warehouse, bin_a):
        """Receiving 200 at 5.00 creates the level and one ledger entry."""
        result = receive(item.id, "200", bin_id=bin_a.id, unit_cost="5.00")

        assert result.status == PostingStatus.POSTED
        assert result.document_number == "GRN-2024-0001"

        level = StockSelector(session).get_level(item.id, warehouse.id, bin_a.id)
        assert level.quantity == Decimal("200")
        assert level.available_quantity == Decimal("200")
        assert level.average_cost == Decimal("5.00")

        entries = _ledger(session, result)
        assert len(entries) == 1
        assert entries[0].quantity_in == Decimal("200")
        assert entries[0].quantity_out == Decimal("0")
        assert entries[0].running_balance == Decimal("200")
        assert entries[0].transaction_type == TransactionType.GRN
        assert entries[0].total_cost == Decimal("1000.00")
        assert entries[0].reference == "GRN GRN-2024-0001 - Item Receipt"


@pytest.fixture
def received(receive, item, bin_a):
    return receive(item.id, "200", bin_id=bin_a.id, unit_cost="5.00")


@pytest.fixture
def issued(poster, received, item, warehouse, bin_a, work_order):
    return poster.post_issue(
        IssueRequest(
            warehouse_id=warehouse.id,
            lines=(DocumentLineInput(item_id=item.id, quantity=Decimal("50"), bin_id=bin_a.id),),
            requested_by=TEST_ACTOR,
            work_order_id=work_order.id,
            purpose="Frame assembly",
        )
    )


@pytest.fixture
def returned(poster, issued, item, warehouse, bin_a):
    return poster.post_return(
        ReturnRequest(
            warehouse_id=warehouse.id,
            lines=(DocumentLineInput(item_id=item.id, quantity=Decimal("10"), bin_id=bin_a.id),),
            returned_by=TEST_ACTOR,
            min_id=issued.document_id,
            reason="Surplus",
        )
    )


@pytest.fixture
def transferred(poster, returned, item, warehouse, second_warehouse, bin_a):
    return poster.post_transfer(
        TransferRequest(
            from_warehouse_id=warehouse.id,
            to_warehouse_id=second_warehouse.id,
            lines=(TransferLineInput(item_id=item.id, quantity=Decimal("30"), from_bin_id=bin_a.id),),
            transferred_by=TEST_ACTOR,
        )
    )


class TestScenarioIssue:
    def test_issue_against_work_order(self, session, issued, item, warehouse, bin_a, work_order):
        assert issued.status == PostingStatus.POSTED
        assert issued.document_number == "MIN-2024-0001"

        level = StockSelector(session).get_level(item.id, warehouse.id, bin_a.id)
        assert level.quantity == Decimal("150")

        (entry,) = _ledger(session, issued)
        assert entry.quantity_out == Decimal("50")
        assert entry.running_balance == Decimal("150")
        assert entry.work_order_id == work_order.id
        # Outbound entries are valued at the average cost
        assert entry.unit_cost == Decimal("5.00")


class TestScenarioReturn:
    def test_return_referencing_issue(self, session, returned, item, warehouse, bin_a, work_order):
        assert returned.status == PostingStatus.POSTED

        level = StockSelector(session).get_level(item.id, warehouse.id, bin_a.id)
        assert level.quantity == Decimal("160")

        (entry,) = _ledger(session, returned)
        assert entry.transaction_type == TransactionType.RETURN
        assert entry.running_balance == Decimal("160")
        # Work order is inherited from the referenced issue
        assert entry.work_order_id == work_order.id


class TestScenarioTransfer:
    def test_transfer_between_warehouses(
        self, session, transferred, item, warehouse, second_warehouse, bin_a
    ):
        assert transferred.status == PostingStatus.POSTED
        assert transferred.document_number == "TRF-2024-0001"

        stock = StockSelector(session)
        assert stock.get_level(item.id, warehouse.id, bin_a.id).quantity == Decimal("130")
        target = stock.get_level(item.id, second_warehouse.id)
        assert target.quantity == Decimal("30")
        assert target.average_cost == Decimal("5.00")

        out_entry, in_entry = _ledger(session, transferred)
        assert out_entry.transaction_type == TransactionType.TRANSFER
        assert in_entry.transaction_type == TransactionType.TRANSFER
        assert (out_entry.warehouse_id, out_entry.quantity_out) == (warehouse.id, Decimal("30"))
        assert (in_entry.warehouse_id, in_entry.quantity_in) == (
            second_warehouse.id,
            Decimal("30"),
        )
        assert out_entry.running_balance == Decimal("130")
        assert in_entry.running_balance == Decimal("30")


class TestScenarioOverAdjustment:
    def _decrease_500(self, poster, warehouse, item, bin_a):
        return poster.post_adjustment(
            AdjustmentRequest(
                warehouse_id=warehouse.id,
                reason="Stock count",
                lines=(
                    AdjustmentLineInput(
                        item_id=item.id,
                        quantity=Decimal("500"),
                        adjustment_type="decrease",
                        bin_id=bin_a.id,
                    ),
                ),
                adjusted_by=TEST_ACTOR,
            )
        )

    def test_reject_policy_refuses_and_changes_nothing(
        self, session, poster, transferred, item, warehouse, bin_a
    ):
        """Default policy: the decrease fails with INSUFFICIENT_STOCK."""
        entries_before = len(LedgerSelector(session).query(item_id=item.id))

        result = self._decrease_500(poster, warehouse, item, bin_a)

        assert result.status == PostingStatus.INSUFFICIENT_STOCK
        assert result.error_code == "INSUFFICIENT_STOCK"
        assert not result.is_success
        level = StockSelector(session).get_level(item.id, warehouse.id, bin_a.id)
        assert level.quantity == Decimal("130")
        assert len(LedgerSelector(session).query(item_id=item.id)) == entries_before

    def test_clamp_policy_floors_at_zero(
        self, session, clamp_poster, transferred, item, warehouse, bin_a, captured_logs
    ):
        """Clamp policy: stock drops to zero and the ledger records 130 out."""
        result = self._decrease_500(clamp_poster, warehouse, item, bin_a)

        assert result.status == PostingStatus.POSTED
        level = StockSelector(session).get_level(item.id, warehouse.id, bin_a.id)
        assert level.quantity == Decimal("0")
        assert level.available_quantity == Decimal("0")

        (entry,) = _ledger(session, result)
        assert entry.quantity_out == Decimal("130")
        assert entry.running_balance == Decimal("0")
        assert entry.reference == "ADJ ADJ-2024-0001 - Stock Adjustment: Stock count"

        clamped = [r for r in captured_logs() if r["message"] == "stock_clamped"]
        assert len(clamped) == 1
        assert clamped[0]["level"] == "WARNING"


@pytest.mark.slow_locks
class TestScenarioConcurrentPurchaseOrderNumbers:
    def test_twenty_concurrent_po_numbers(self, session_factory):
        """Twenty threads allocate PO-2024-0001 .. PO-2024-0020 exactly once each."""
        n = 20
        barrier = Barrier(n)

        def allocate(_):
            sess = session_factory()
            try:
                barrier.wait(timeout=30)
                number = DocumentNumberService(sess).next("PO", 2024)
                sess.commit()
                return number
            finally:
                sess.close()

        with ThreadPoolExecutor(max_workers=n) as pool:
            numbers = list(pool.map(allocate, range(n)))

        assert len(set(numbers)) == n
        assert sorted(numbers) == [f"PO-2024-{i:04d}" for i in range(1, n + 1)]


class TestScenarioLedgerReconciles:
    def test_full_chain_reconciles(self, session, transferred, item):
        """After the whole chain the aggregate is fully explained by the ledger."""
        assert LedgerSelector(session).verify_against_aggregate() == []
        seqs = session.execute(
            select(LedgerEntry.seq).where(LedgerEntry.item_id == item.id).order_by(LedgerEntry.seq)
        ).scalars().all()
        assert len(seqs) == len(set(seqs)) == 5
