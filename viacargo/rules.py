"""Money and progress rules for a single service order.

All functions are pure and total over non-negative inputs.  Costs and profit
use plain float arithmetic; the received amount multiplies the order total
by the paid fraction, which is summed in Decimal so that paying every
milestone yields exactly the total (0.20 + 0.40 + 0.40 == 1).
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from .domain import PaymentStatus, ProgressStage

DEPOSIT_SHARE = Decimal("0.20")
PICKUP_SHARE = Decimal("0.40")
DELIVERY_SHARE = Decimal("0.40")

STAGE_LABELS = {
    ProgressStage.LEAD: "AGUARDANDO",
    ProgressStage.DEPOSIT: "RESERVA",
    ProgressStage.PICKUP: "COLETA",
    ProgressStage.DELIVERY: "ENTREGA",
}

_CENT = Decimal("0.01")


def calculate_costs(financials) -> float:
    extras_total = sum(e.cost * e.qty for e in financials.extras)
    return financials.driver_cost + extras_total


def calculate_profit(financials) -> float:
    return financials.total_value - calculate_costs(financials)


def paid_fraction(status: PaymentStatus) -> Decimal:
    fraction = Decimal(0)
    if status.deposit:
        fraction += DEPOSIT_SHARE
    if status.pickup:
        fraction += PICKUP_SHARE
    if status.delivery:
        fraction += DELIVERY_SHARE
    return fraction


def calculate_received_amount(order) -> float:
    """Amount the client has paid so far, from the milestone flags."""
    return order.financials.total_value * float(paid_fraction(order.payment_status))


def calculate_pending_amount(order) -> float:
    return order.financials.total_value - calculate_received_amount(order)


def derive_progress(status: PaymentStatus) -> ProgressStage:
    """delivery > pickup > deposit > none, regardless of the lower flags."""
    if status.delivery:
        return ProgressStage.DELIVERY
    if status.pickup:
        return ProgressStage.PICKUP
    if status.deposit:
        return ProgressStage.DEPOSIT
    return ProgressStage.LEAD


def stage_label(progress) -> str:
    return STAGE_LABELS[ProgressStage(progress)]


CURRENCY_SYMBOLS = {"BRL": "R$", "USD": "US$", "EUR": "€", "GBP": "£"}


def currency_symbol(code: str) -> str:
    code = (code or "BRL").upper()
    return CURRENCY_SYMBOLS.get(code, code)


def format_currency(value, symbol: str = "R$", locale: str = "pt-BR") -> str:
    """Currency text rounded half-up to cents.

    ``en`` locales group with commas (``US$ 1,234.50``); every other locale
    uses the pt-BR convention (``R$ 1.234,50``).
    """
    value = value or 0
    if not math.isfinite(value):
        return f"{symbol} -"
    amount = Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    whole, cents = f"{abs(amount):,.2f}".split(".")
    if (locale or "").lower().startswith("en"):
        return f"{sign}{symbol} {whole}.{cents}"
    return f"{sign}{symbol} {whole.replace(',', '.')},{cents}"
