"""Urgency classification for orders and the rate-limited critical-orders alert.

Day differences are whole local calendar days between today and the pickup
date (midnight to midnight).  An order is critical when it is not delivered
and its pickup is at most ``critical_days`` away, including today and any
past date.

The alert is a debounce, not a per-order dedup: once raised, nothing is
raised again until the cooldown has elapsed, however the critical set
changes in between.  The last-raised timestamp lives in a ``FlagStore``
(epoch milliseconds as a string) so it survives page reloads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Protocol

from .clock import Clock, SystemClock
from .domain import DeadlineStatus, ProgressStage
from .utils import parse_iso_date

logger = logging.getLogger("viacargo.criticality")

CRITICAL_DAYS = 5
WARNING_DAYS = 10
ALERT_COOLDOWN = timedelta(hours=5)
LAST_ALERT_KEY = "vc_last_alert"


def days_until(date_str: str | None, today: date) -> int | None:
    """Calendar days from ``today`` to ``date_str``; None if it is not a date."""
    target = parse_iso_date(date_str)
    if target is None:
        return None
    return (target - today).days


def is_order_critical(order, today: date, critical_days: int = CRITICAL_DAYS) -> bool:
    if order.progress == ProgressStage.DELIVERY:
        return False
    diff = days_until(order.pickup_date, today)
    if diff is None:
        return False
    return diff <= critical_days


def deadline_status(
    date_str: str | None,
    today: date,
    critical_days: int = CRITICAL_DAYS,
    warning_days: int = WARNING_DAYS,
) -> DeadlineStatus | None:
    diff = days_until(date_str, today)
    if diff is None:
        return None
    if diff < 0:
        return DeadlineStatus.LATE
    if diff <= critical_days:
        return DeadlineStatus.CRITICAL
    if diff <= warning_days:
        return DeadlineStatus.WARNING
    return DeadlineStatus.NORMAL


def deadline_label(diff: int | None) -> str:
    if diff is None:
        return ""
    if diff < 0:
        return f"{abs(diff)}d Atraso"
    if diff == 0:
        return "Hoje"
    return f"{diff} dias"


# ── Durable flag storage ─────────────────────────────────────────────────────

class FlagStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryFlagStore:
    def __init__(self, initial: dict[str, str] | None = None):
        self.values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value


class CookieFlagStore:
    """Browser cookies as the durable store.

    Reads come from the request cookies; writes are buffered and copied onto
    the outgoing response with ``apply``.
    """

    MAX_AGE = 60 * 60 * 24 * 365

    def __init__(self, cookies: dict[str, str]):
        self._cookies = dict(cookies)
        self._pending: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._pending.get(key, self._cookies.get(key))

    def set(self, key: str, value: str) -> None:
        self._pending[key] = value

    def apply(self, response) -> None:
        for key, value in self._pending.items():
            response.set_cookie(key, value, max_age=self.MAX_AGE, httponly=True, samesite="lax")
        self._pending.clear()


# ── Alert monitor ────────────────────────────────────────────────────────────

@dataclass
class CriticalAlert:
    count: int
    names: list[str] = field(default_factory=list)
    raised_at_ms: int = 0


class AlertMonitor:
    """Runs one recomputation pass per ``check`` call.

    Call it whenever the order set changes and on every periodic tick.
    """

    def __init__(
        self,
        store: FlagStore,
        clock: Clock | None = None,
        cooldown: timedelta = ALERT_COOLDOWN,
        critical_days: int = CRITICAL_DAYS,
        key: str = LAST_ALERT_KEY,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.cooldown = cooldown
        self.critical_days = critical_days
        self.key = key

    def critical_orders(self, orders: Iterable) -> list:
        today = self.clock.today()
        return [o for o in orders if is_order_critical(o, today, self.critical_days)]

    def _last_alert_ms(self) -> int | None:
        raw = self.store.get(self.key)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Discarding malformed last-alert timestamp {raw!r}")
            return None

    def check(self, orders: Iterable) -> CriticalAlert | None:
        critical = self.critical_orders(orders)
        if not critical:
            return None
        now_ms = self.clock.now_ms()
        last = self._last_alert_ms()
        cooldown_ms = int(self.cooldown.total_seconds() * 1000)
        if last is not None and now_ms - last <= cooldown_ms:
            return None
        self.store.set(self.key, str(now_ms))
        logger.info(f"Critical-orders alert raised for {len(critical)} order(s)")
        return CriticalAlert(
            count=len(critical),
            names=[o.client_name for o in critical],
            raised_at_ms=now_ms,
        )
