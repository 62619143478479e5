"""
Tests for StockSelector: levels, on-hand totals, availability and reorder
alerts.
"""

from decimal import Decimal
from uuid import uuid4

from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.stock_aggregate import StockAggregateStore
from tests.conftest import TEST_ACTOR


class TestLevels:
    def test_filters(self, session, receive, item, make_item, warehouse, second_warehouse, bin_a):
        other = make_item()
        receive(item.id, "5", bin_id=bin_a.id)
        receive(item.id, "3")
        receive(item.id, "2", warehouse_id=second_warehouse.id)
        receive(other.id, "9")

        stock = StockSelector(session)
        assert len(stock.levels(item_id=item.id)) == 3
        assert len(stock.levels(item_id=item.id, warehouse_id=warehouse.id)) == 2
        (binned,) = stock.levels(item_id=item.id, bin_id=bin_a.id)
        assert binned.quantity == Decimal("5")

    def test_get_level_distinguishes_unbinned(self, session, receive, item, warehouse, bin_a):
        receive(item.id, "5", bin_id=bin_a.id)

        stock = StockSelector(session)
        assert stock.get_level(item.id, warehouse.id, bin_a.id).quantity == Decimal("5")
        assert stock.get_level(item.id, warehouse.id) is None

    def test_on_hand(self, session, receive, item, warehouse, second_warehouse, bin_a, bin_b):
        receive(item.id, "5", bin_id=bin_a.id)
        receive(item.id, "6", bin_id=bin_b.id)
        receive(item.id, "7", warehouse_id=second_warehouse.id)

        stock = StockSelector(session)
        assert stock.on_hand(item.id, warehouse.id) == Decimal("11")
        assert stock.on_hand(item.id) == Decimal("18")
        assert stock.on_hand(uuid4()) == Decimal("0")


class TestAvailableByItem:
    def test_reserved_stock_is_excluded(self, session, policy, receive, item, warehouse):
        receive(item.id, "10")
        StockAggregateStore(session, policy).reserve(item.id, warehouse.id, None, Decimal("4"))

        assert StockSelector(session).available_by_item([item.id]) == {item.id: Decimal("6")}

    def test_requested_items_without_stock_are_zero(self, session, item, make_item):
        other = make_item()

        result = StockSelector(session).available_by_item([item.id, other.id])

        assert result == {item.id: Decimal("0"), other.id: Decimal("0")}

    def test_empty_request(self, session):
        assert StockSelector(session).available_by_item([]) == {}

    def test_warehouse_filter(self, session, receive, item, warehouse, second_warehouse):
        receive(item.id, "10")
        receive(item.id, "1", warehouse_id=second_warehouse.id)

        stock = StockSelector(session)
        assert stock.available_by_item(warehouse_id=second_warehouse.id) == {item.id: Decimal("1")}
        assert stock.available_by_item() == {item.id: Decimal("11")}


class TestReorderAlerts:
    def test_at_or_below_reorder_point(self, session, receive, make_item):
        low = make_item("LOW-1", reorder_point=Decimal("10"))
        edge = make_item("EDGE-1", reorder_point=Decimal("5"))
        fine = make_item("FINE-1", reorder_point=Decimal("2"))
        make_item("UNTRACKED-1")
        receive(low.id, "3")
        receive(edge.id, "5")
        receive(fine.id, "8")

        alerts = StockSelector(session).below_reorder_point()

        assert [a.item_code for a in alerts] == ["EDGE-1", "LOW-1"]
        assert alerts[1].shortfall == Decimal("7")

    def test_item_never_stocked_alerts(self, session, make_item):
        make_item("NEW-1", reorder_point=Decimal("1"))

        (alert,) = StockSelector(session).below_reorder_point()

        assert alert.quantity == Decimal("0")

    def test_inactive_items_are_skipped(self, session, registry, make_item):
        retired = make_item("OLD-1", reorder_point=Decimal("1"))
        registry.deactivate_item(retired.id, TEST_ACTOR)

        assert StockSelector(session).below_reorder_point() == []
