"""Dashboard figures: monthly cash, receivables, status counts, list filtering.

Every function here is a pure function of its arguments.  The revenue card
and the goal widget each call ``monthly_net`` with their own month key, so
the two can be navigated independently.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from .criticality import CRITICAL_DAYS, is_order_critical
from .domain import OrderFilter, ProgressStage, TransactionType
from .rules import calculate_costs, calculate_received_amount
from .utils import parse_iso_date


# ── Result containers ────────────────────────────────────────────────────────

@dataclass
class CashFlow:
    cash_in: float = 0.0
    cash_out: float = 0.0

    @property
    def net(self) -> float:
        return self.cash_in - self.cash_out


@dataclass
class OrderCounts:
    all: int = 0
    active: int = 0
    completed: int = 0
    critical: int = 0

    def for_filter(self, flt: OrderFilter) -> int:
        return getattr(self, OrderFilter(flt).value)


@dataclass
class GoalProgress:
    goal: float
    net: float
    percentage: float      # not capped at 100
    target_met: bool
    remaining: float


# ── Monthly cash ─────────────────────────────────────────────────────────────

def orders_in_month(orders: Iterable, key: str) -> list:
    return [o for o in orders if (o.pickup_date or "").startswith(key)]


def transactions_in_month(transactions: Iterable, key: str) -> list:
    return [t for t in transactions if (t.date or "").startswith(key)]


def monthly_cash_flow(orders: Iterable, transactions: Iterable, key: str) -> CashFlow:
    flow = CashFlow()
    for order in orders_in_month(orders, key):
        flow.cash_in += calculate_received_amount(order)
        # Committed-but-unpaid costs do not move cash
        if order.is_costs_paid:
            flow.cash_out += calculate_costs(order.financials)
    for t in transactions_in_month(transactions, key):
        kind = TransactionType(t.type)
        if kind is TransactionType.INCOME:
            flow.cash_in += t.amount
        elif kind is TransactionType.EXPENSE:
            flow.cash_out += t.amount
        else:
            raise ValueError(f"Unhandled transaction type {kind!r}")
    return flow


def monthly_net(orders: Iterable, transactions: Iterable, key: str) -> float:
    return monthly_cash_flow(orders, transactions, key).net


def global_pending_receivables(orders: Iterable) -> float:
    """All-time accounts receivable, not scoped to any month."""
    pending = 0.0
    for order in orders:
        pending += order.financials.total_value - calculate_received_amount(order)
    return pending


def goal_progress(net: float, goal: float | None) -> GoalProgress:
    goal = goal or 0.0
    percentage = max(0.0, (net / (goal or 1)) * 100)
    return GoalProgress(
        goal=goal,
        net=net,
        percentage=percentage,
        target_met=percentage >= 100,
        remaining=max(0.0, goal - net),
    )


# ── Counts and filtering ─────────────────────────────────────────────────────

def matches_filter(order, flt: OrderFilter, today: date, critical_days: int = CRITICAL_DAYS) -> bool:
    flt = OrderFilter(flt)
    if flt is OrderFilter.ALL:
        return True
    if flt is OrderFilter.ACTIVE:
        return order.progress < ProgressStage.DELIVERY
    if flt is OrderFilter.COMPLETED:
        return order.progress == ProgressStage.DELIVERY
    if flt is OrderFilter.CRITICAL:
        return is_order_critical(order, today, critical_days)
    raise ValueError(f"Unhandled order filter {flt!r}")


def count_orders(orders: Iterable, today: date, critical_days: int = CRITICAL_DAYS) -> OrderCounts:
    orders = list(orders)
    return OrderCounts(
        all=len(orders),
        active=sum(1 for o in orders if matches_filter(o, OrderFilter.ACTIVE, today, critical_days)),
        completed=sum(1 for o in orders if matches_filter(o, OrderFilter.COMPLETED, today, critical_days)),
        critical=sum(1 for o in orders if matches_filter(o, OrderFilter.CRITICAL, today, critical_days)),
    )


def _pickup_sort_key(indexed):
    idx, order = indexed
    d = parse_iso_date(order.pickup_date)
    # Undated orders go last; the original index keeps equal dates in input order
    return (d is None, d or date.min, idx)


def filter_orders(orders: Iterable, flt: OrderFilter, today: date, critical_days: int = CRITICAL_DAYS) -> list:
    """Orders matching ``flt``, ascending by pickup date, stable for ties."""
    indexed = [(i, o) for i, o in enumerate(orders) if matches_filter(o, flt, today, critical_days)]
    indexed.sort(key=_pickup_sort_key)
    return [o for _, o in indexed]
