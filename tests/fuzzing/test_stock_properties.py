"""
Property-based tests for stock postings.

Random sequences of receipts, issues, adjustments and bin-to-bin transfers
are posted against two bins and checked against an in-memory model:

- The aggregate always equals the replay of the ledger
- Each ledger entry carries the previous bin and warehouse balance plus
  its own net movement
- Under the reject policy no location ever goes negative and a rejected
  document leaves every balance untouched
- Under the clamp policy a short movement moves only what is there
- The weighted-average cost stays within the range of receipt costs
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from stock_kernel.domain.dtos import (
    AdjustmentLineInput,
    AdjustmentRequest,
    DocumentLineInput,
    IssueRequest,
    ReceiptRequest,
    TransferLineInput,
    TransferRequest,
)
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.movement_posting_service import PostingStatus
from tests.conftest import TEST_ACTOR

FUZZ_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)

quantities = st.decimals(
    min_value=Decimal("0.001"),
    max_value=Decimal("500"),
    places=3,
    allow_nan=False,
    allow_infinity=False,
)

unit_costs = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

# (kind, bin index, quantity); a transfer moves from the indexed bin to the other
operations = st.lists(
    st.tuples(
        st.sampled_from(["receive", "issue", "increase", "decrease", "transfer"]),
        st.integers(min_value=0, max_value=1),
        quantities,
    ),
    min_size=1,
    max_size=12,
)

INBOUND = ("receive", "increase")


def _post(service, warehouse_id, item_id, bins, kind, index, quantity):
    bin_id = bins[index]
    if kind == "receive":
        return service.post_receipt(
            ReceiptRequest(
                warehouse_id=warehouse_id,
                lines=(DocumentLineInput(item_id=item_id, quantity=quantity, bin_id=bin_id, unit_cost=Decimal("1")),),
                received_by=TEST_ACTOR,
            )
        )
    if kind == "issue":
        return service.post_issue(
            IssueRequest(
                warehouse_id=warehouse_id,
                lines=(DocumentLineInput(item_id=item_id, quantity=quantity, bin_id=bin_id),),
                requested_by=TEST_ACTOR,
            )
        )
    if kind == "transfer":
        return service.post_transfer(
            TransferRequest(
                from_warehouse_id=warehouse_id,
                to_warehouse_id=warehouse_id,
                lines=(
                    TransferLineInput(
                        item_id=item_id,
                        quantity=quantity,
                        from_bin_id=bin_id,
                        to_bin_id=bins[1 - index],
                    ),
                ),
                transferred_by=TEST_ACTOR,
            )
        )
    return service.post_adjustment(
        AdjustmentRequest(
            warehouse_id=warehouse_id,
            reason="Cycle count",
            lines=(
                AdjustmentLineInput(
                    item_id=item_id,
                    quantity=quantity,
                    adjustment_type=kind,
                    bin_id=bin_id,
                ),
            ),
            adjusted_by=TEST_ACTOR,
        )
    )


def _bin_balances(session, item_id, warehouse_id, bins):
    stock = StockSelector(session)
    balances = []
    for bin_id in bins:
        level = stock.get_level(item_id, warehouse_id, bin_id)
        balances.append(level.quantity if level is not None else Decimal("0"))
    return balances


def _assert_balance_chains(session, item_id):
    """Walk the item's ledger in sequence order and check both running balances."""
    entries = sorted(LedgerSelector(session).query(item_id=item_id), key=lambda e: e.seq)
    by_bin: dict = {}
    by_warehouse: dict = {}
    for entry in entries:
        net = entry.quantity_in - entry.quantity_out
        bin_key = (entry.warehouse_id, entry.bin_id)
        expected_bin = by_bin.get(bin_key, Decimal("0")) + net
        expected_warehouse = by_warehouse.get(entry.warehouse_id, Decimal("0")) + net
        assert entry.running_balance == expected_bin, entry.seq
        assert entry.warehouse_balance == expected_warehouse, entry.seq
        by_bin[bin_key] = entry.running_balance
        by_warehouse[entry.warehouse_id] = entry.warehouse_balance
    return entries


class TestRejectPolicy:
    @FUZZ_SETTINGS
    @given(ops=operations)
    def test_balances_follow_model(self, session, poster, make_item, warehouse, bin_a, bin_b, ops):
        item = make_item()
        bins = (bin_a.id, bin_b.id)
        model = [Decimal("0"), Decimal("0")]

        for kind, index, quantity in ops:
            if kind in INBOUND:
                expected = PostingStatus.POSTED
                model[index] += quantity
            elif model[index] < quantity:
                expected = PostingStatus.INSUFFICIENT_STOCK
            else:
                expected = PostingStatus.POSTED
                model[index] -= quantity
                if kind == "transfer":
                    model[1 - index] += quantity

            result = _post(poster, warehouse.id, item.id, bins, kind, index, quantity)
            assert result.status == expected, (kind, index, quantity, result.message)

        balances = _bin_balances(session, item.id, warehouse.id, bins)
        assert balances == model
        assert all(balance >= 0 for balance in balances)

        ledger = LedgerSelector(session)
        for bin_id, balance in zip(bins, balances):
            assert ledger.replay_balance(item.id, warehouse.id, bin_id) == balance
        assert ledger.verify_against_aggregate() == []
        _assert_balance_chains(session, item.id)


class TestClampPolicy:
    @FUZZ_SETTINGS
    @given(ops=operations)
    def test_short_movements_are_clamped(self, session, clamp_poster, make_item, warehouse, bin_a, bin_b, ops):
        item = make_item()
        bins = (bin_a.id, bin_b.id)
        model = [Decimal("0"), Decimal("0")]

        for kind, index, quantity in ops:
            if kind in INBOUND:
                model[index] += quantity
            else:
                moved = min(quantity, model[index])
                model[index] -= moved
                if kind == "transfer":
                    model[1 - index] += moved

            result = _post(clamp_poster, warehouse.id, item.id, bins, kind, index, quantity)
            assert result.status == PostingStatus.POSTED, result.message

        balances = _bin_balances(session, item.id, warehouse.id, bins)
        assert balances == model
        assert all(balance >= 0 for balance in balances)
        assert LedgerSelector(session).verify_against_aggregate() == []
        _assert_balance_chains(session, item.id)


class TestWeightedAverage:
    @FUZZ_SETTINGS
    @given(receipts=st.lists(st.tuples(quantities, unit_costs), min_size=1, max_size=8))
    def test_average_within_receipt_cost_range(self, session, receive, make_item, warehouse, receipts):
        item = make_item()

        for quantity, cost in receipts:
            assert receive(item.id, str(quantity), unit_cost=str(cost)).status == PostingStatus.POSTED

        level = StockSelector(session).get_level(item.id, warehouse.id)
        costs = [cost for _, cost in receipts]
        tolerance = Decimal("0.000001")
        assert min(costs) - tolerance <= level.average_cost <= max(costs) + tolerance
        assert level.quantity == sum((q for q, _ in receipts), Decimal("0"))


@pytest.mark.parametrize("kind", ["issue", "decrease", "transfer"])
def test_outbound_from_empty_bin_is_rejected(kind, session, poster, make_item, warehouse, bin_a, bin_b):
    item = make_item()

    result = _post(poster, warehouse.id, item.id, (bin_a.id, bin_b.id), kind, 0, Decimal("1"))

    assert result.status == PostingStatus.INSUFFICIENT_STOCK
    assert _bin_balances(session, item.id, warehouse.id, (bin_a.id, bin_b.id)) == [Decimal("0")] * 2
