"""Tests for the read projections: grouping, search, stock status and billing detail."""

import pytest

from iml_engines.projections import (
    UNCATEGORIZED,
    UNKNOWN_COMPANY,
    UNKNOWN_ORDER_NUMBER,
    PurchaseLine,
    StockLine,
    StockStatus,
    billing_detail,
    filter_items,
    group_by_category,
    group_by_company,
    matches_search,
    purchase_lines,
    remaining_to_track,
    stock_for,
    stock_lines,
    stock_status,
)
from iml_kernel.domain.records import BilledProduct, BillingRecord, OrderReference


def _bill(billing_id="BILL-0001", company="Acme Foods", order_number="42", products=()):
    return BillingRecord(
        billing_id=billing_id,
        order=OrderReference(order_id="ORD-1", order_number=order_number, company=company),
        products=tuple(products),
    )


class TestGroupByCompany:

    def test_groups_by_company_then_order_number(self, order_factory):
        orders = [
            order_factory(order_id="A1", company="Acme", order_number="100"),
            order_factory(order_id="B1", company="Beta", order_number="200"),
            order_factory(order_id="A2", company="Acme", order_number="100"),
        ]
        grouped = group_by_company(orders)
        assert list(grouped) == ["Acme", "Beta"]
        assert [o.order_id for o in grouped["Acme"]["100"]] == ["A1", "A2"]

    def test_blank_company_falls_back(self, order_factory):
        grouped = group_by_company([order_factory(company="  ")])
        assert UNKNOWN_COMPANY in grouped

    def test_blank_order_number_uses_fallback(self):
        grouped = group_by_company([_bill(order_number="")])
        assert UNKNOWN_ORDER_NUMBER in grouped["Acme Foods"]

    def test_custom_order_fallback(self):
        grouped = group_by_company([_bill(order_number="")], order_fallback="Unknown Order")
        assert list(grouped["Acme Foods"]) == ["Unknown Order"]


class TestSearch:

    def test_empty_term_matches_everything(self, order_factory):
        assert matches_search(order_factory(), None)
        assert matches_search(order_factory(), "  ")

    def test_case_insensitive_company_match(self, order_factory):
        assert matches_search(order_factory(company="Acme Foods"), "acme")

    def test_matches_product_iml_name(self, order_factory):
        assert matches_search(order_factory(), "mango")
        assert not matches_search(order_factory(), "pineapple")

    def test_matches_billing_record_products(self):
        bill = _bill(products=[BilledProduct("p1", iml_name="Berry Blast")])
        assert matches_search(bill, "berry")

    def test_filter_items_keeps_order(self, order_factory):
        orders = [
            order_factory(order_id="1", company="Acme"),
            order_factory(order_id="2", company="Beta"),
            order_factory(order_id="3", company="Acme East"),
        ]
        assert [o.order_id for o in filter_items(orders, "acme")] == ["1", "3"]


class TestStockStatus:

    @pytest.mark.parametrize(
        "qty, expected",
        [
            (-5, StockStatus.OUT_OF_STOCK),
            (0, StockStatus.OUT_OF_STOCK),
            (1, StockStatus.LOW_STOCK),
            (500, StockStatus.LOW_STOCK),
            (501, StockStatus.AVAILABLE),
        ],
    )
    def test_thresholds(self, qty, expected):
        assert stock_status(qty) is expected

    def test_custom_threshold(self):
        assert stock_status(50, low_stock_threshold=10) is StockStatus.AVAILABLE


class TestStockLines:

    def test_same_category_size_summed_across_orders(self, order_factory, product_factory):
        orders = [
            order_factory(order_id="O1", products=[product_factory("p1")]),
            order_factory(order_id="O2", products=[product_factory("p9")]),
        ]
        histories = {
            "O1_p1": [{"final_qty": 300}],
            "O2_p9": [{"final_qty": 450}],
        }
        lines = stock_lines(orders, histories)
        assert lines == [StockLine("Round", "250ml", 750, StockStatus.AVAILABLE)]
        assert stock_for(orders, histories, "Round", "250ml") == 750

    def test_orphaned_history_not_counted(self, order_factory):
        histories = {"ORD-1_p1": [{"final_qty": 10}], "GONE_p1": [{"final_qty": 999}]}
        assert stock_for([order_factory()], histories, "Round", "250ml") == 10

    def test_group_by_category(self):
        lines = [
            StockLine("Round", "250ml", 10, StockStatus.LOW_STOCK),
            StockLine("", "1L", 0, StockStatus.OUT_OF_STOCK),
        ]
        grouped = group_by_category(lines)
        assert grouped["Round"]["250ml"].quantity == 10
        assert UNCATEGORIZED in grouped


class TestBillingDetail:

    def test_unbilled_products_listed_as_pending(self, order_factory, product_factory):
        order = order_factory(
            products=[
                product_factory("p1"),
                product_factory("p2", size="500ml"),
                product_factory("p3", size="1L"),
            ]
        )
        bill = _bill(
            products=[
                BilledProduct("p1", product_name="Round", size="250ml", final_qty=100),
                BilledProduct("p2", product_name="Round", size="500ml", final_qty=200),
            ]
        )
        lines = billing_detail(bill, order)
        assert [line.product_id for line in lines] == ["p1", "p2", "p3"]
        assert [line.final_qty for line in lines] == [100, 200, 0]
        assert [line.pending for line in lines] == [False, False, True]
        assert lines[2].iml_type == "LID"

    def test_deleted_order_returns_billed_snapshot(self):
        bill = _bill(products=[BilledProduct("p1", final_qty=5)])
        lines = billing_detail(bill, None)
        assert len(lines) == 1
        assert lines[0].billed


class TestPurchaseLines:

    def test_only_products_moved_to_purchase(self, order_factory, product_factory):
        gated = product_factory("p1")
        gated.move_to_purchase = True
        order = order_factory(products=[gated, product_factory("p2")])
        lines = purchase_lines(
            [order],
            {"ORD-1_p1": [{"quantity": 400}]},
            {"ORD-1_p1": [{"quantity": 250}]},
        )
        assert len(lines) == 1
        line = lines[0]
        assert isinstance(line, PurchaseLine)
        assert (line.tracked_qty, line.received_qty) == (400, 250)
        assert line.remaining_to_track == 600

    def test_remaining_to_track(self):
        assert remaining_to_track(1000, [{"quantity": 700}, {"quantity": 400}]) == 0
        assert remaining_to_track(1000, []) == 1000

