"""Monthly cash, receivables, goal progress, counts and list filtering."""

from datetime import date

import pytest

from viacargo.aggregation import (
    count_orders, filter_orders, global_pending_receivables, goal_progress,
    monthly_cash_flow, monthly_net, orders_in_month,
)
from viacargo.domain import OrderFilter, ServiceType, TransactionType

TODAY = date(2024, 6, 10)


class TestMonthlyNet:

    def test_reference_scenario(self, make_order, make_transaction):
        orders = [make_order(
            pickup_date="2024-06-05", total_value=1000.0, driver_cost=200.0,
            deposit=True, pickup=True, is_costs_paid=True,
        )]
        transactions = [make_transaction(amount=50.0, type=TransactionType.EXPENSE, date="2024-06-20")]
        assert monthly_net(orders, transactions, "2024-06") == pytest.approx(350.0)

    def test_unpaid_costs_do_not_count(self, make_order):
        orders = [make_order(total_value=1000.0, driver_cost=200.0, deposit=True, is_costs_paid=False)]
        flow = monthly_cash_flow(orders, [], "2024-06")
        assert flow.cash_in == pytest.approx(200.0)
        assert flow.cash_out == 0.0

    def test_paid_costs_include_extras(self, make_order, make_extra):
        orders = [make_order(
            total_value=0.0, driver_cost=100.0, is_costs_paid=True,
            extras=[make_extra(ServiceType.HELPER, qty=2, cost=50.0)],
        )]
        assert monthly_cash_flow(orders, [], "2024-06").cash_out == 200.0

    def test_income_transaction(self, make_transaction):
        flow = monthly_cash_flow([], [make_transaction(amount=80.0, type=TransactionType.INCOME)], "2024-06")
        assert flow.cash_in == 80.0
        assert flow.net == 80.0

    def test_other_months_are_excluded(self, make_order, make_transaction):
        orders = [
            make_order(id="a", pickup_date="2024-05-31", deposit=True),
            make_order(id="b", pickup_date="2024-07-01", deposit=True),
        ]
        transactions = [make_transaction(date="2024-05-20")]
        assert monthly_net(orders, transactions, "2024-06") == 0.0

    def test_months_are_independent_of_each_other(self, make_order):
        orders = [
            make_order(id="a", pickup_date="2024-06-05", total_value=1000.0, delivery=True),
            make_order(id="b", pickup_date="2024-07-05", total_value=500.0, delivery=True),
        ]
        assert monthly_net(orders, [], "2024-07") == pytest.approx(200.0)
        assert monthly_net(orders, [], "2024-06") == pytest.approx(400.0)
        assert monthly_net(orders, [], "2024-07") == pytest.approx(200.0)

    def test_undated_orders_never_match(self, make_order):
        assert orders_in_month([make_order(pickup_date="")], "2024-06") == []


class TestPendingReceivables:

    def test_spans_all_months(self, make_order):
        orders = [
            make_order(id="old", pickup_date="2022-01-10", total_value=1000.0, deposit=True),
            make_order(id="new", pickup_date="2024-06-10", total_value=500.0),
            make_order(id="done", pickup_date="2024-03-10", total_value=700.0,
                       deposit=True, pickup=True, delivery=True),
        ]
        assert global_pending_receivables(orders) == pytest.approx(800.0 + 500.0)

    def test_empty(self):
        assert global_pending_receivables([]) == 0.0


class TestGoalProgress:

    def test_partial(self):
        g = goal_progress(350.0, 1000.0)
        assert g.percentage == pytest.approx(35.0)
        assert g.target_met is False
        assert g.remaining == pytest.approx(650.0)

    def test_not_capped_at_hundred(self):
        g = goal_progress(1500.0, 1000.0)
        assert g.percentage == pytest.approx(150.0)
        assert g.target_met is True
        assert g.remaining == 0.0

    def test_negative_net_floors_at_zero(self):
        assert goal_progress(-200.0, 1000.0).percentage == 0.0

    def test_missing_goal_divides_by_one(self):
        g = goal_progress(5.0, None)
        assert g.goal == 0.0
        assert g.percentage == pytest.approx(500.0)


class TestCountsAndFilter:

    @pytest.fixture
    def orders(self, make_order):
        return [
            make_order(id="late", pickup_date="2024-06-08"),
            make_order(id="far", pickup_date="2024-08-01", deposit=True),
            make_order(id="done", pickup_date="2024-06-09", delivery=True),
            make_order(id="soon", pickup_date="2024-06-12", pickup=True),
        ]

    def test_counts(self, orders):
        counts = count_orders(orders, TODAY)
        assert (counts.all, counts.active, counts.completed, counts.critical) == (4, 3, 1, 2)
        assert counts.for_filter(OrderFilter.CRITICAL) == 2

    @pytest.mark.parametrize("flt,expected", [
        (OrderFilter.ALL, ["late", "done", "soon", "far"]),
        (OrderFilter.ACTIVE, ["late", "soon", "far"]),
        (OrderFilter.COMPLETED, ["done"]),
        (OrderFilter.CRITICAL, ["late", "soon"]),
    ])
    def test_filter_sorted_by_pickup(self, orders, flt, expected):
        assert [o.id for o in filter_orders(orders, flt, TODAY)] == expected

    def test_equal_dates_keep_input_order(self, make_order):
        orders = [
            make_order(id="z", pickup_date="2024-06-20"),
            make_order(id="first", pickup_date="2024-06-15"),
            make_order(id="completed", pickup_date="2024-06-15", delivery=True),
            make_order(id="second", pickup_date="2024-06-15"),
            make_order(id="third", pickup_date="2024-06-15", deposit=True),
        ]
        result = filter_orders(orders, OrderFilter.ACTIVE, TODAY)
        assert [o.id for o in result] == ["first", "second", "third", "z"]

    def test_undated_orders_sort_last(self, make_order):
        orders = [make_order(id="nodate", pickup_date=""), make_order(id="dated", pickup_date="2024-09-01")]
        assert [o.id for o in filter_orders(orders, OrderFilter.ALL, TODAY)] == ["dated", "nodate"]

    def test_filter_accepts_string_value(self, orders):
        assert [o.id for o in filter_orders(orders, "completed", TODAY)] == ["done"]
