"""Domain types for service orders, ad-hoc transactions and their enums.

These are plain dataclasses: the rules, aggregation and lifecycle code only
ever sees these, never ORM rows.  Dates that the business buckets by month
(pickup date, delivery forecast, transaction date) are kept as ``YYYY-MM-DD``
strings, the way they are stored.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum


def _utcnow() -> datetime:
    """Naive UTC now, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _short_id() -> str:
    return secrets.token_hex(5)


# ── Enumerations ─────────────────────────────────────────────────────────────

class ServiceType(str, Enum):
    HELPER = "helper"
    ASSEMBLER = "assembler"
    PACKER = "packer"
    OTHER = "other"


# The three labor roles that hold at most one extras entry each
ROLE_TYPES = (ServiceType.HELPER, ServiceType.ASSEMBLER, ServiceType.PACKER)

ROLE_LABELS = {
    ServiceType.HELPER: "Ajudantes",
    ServiceType.ASSEMBLER: "Montadores",
    ServiceType.PACKER: "Embaladores",
}


class ProgressStage(IntEnum):
    LEAD = 0
    DEPOSIT = 20
    PICKUP = 60
    DELIVERY = 100


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class OrderFilter(str, Enum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"
    CRITICAL = "critical"


class DeadlineStatus(str, Enum):
    LATE = "late"
    CRITICAL = "critical"
    WARNING = "warning"
    NORMAL = "normal"


class DocumentRole(str, Enum):
    DRIVER = "driver"
    HELPER = "helper"
    ASSEMBLER = "assembler"
    PACKER = "packer"
    GENERAL = "general"


DEFAULT_NOTE_COLOR = "#334155"

NOTE_COLOR_PRESETS = (
    ("#334155", "Slate"),
    ("#ef4444", "Red"),
    ("#f59e0b", "Amber"),
    ("#10b981", "Green"),
    ("#3b82f6", "Blue"),
    ("#8b5cf6", "Purple"),
    ("#ec4899", "Pink"),
)


# ── Value objects ────────────────────────────────────────────────────────────

@dataclass
class ExtraService:
    type: ServiceType
    name: str = ""
    qty: int = 0
    cost: float = 0.0   # unit cost
    id: str = field(default_factory=_short_id)


@dataclass
class Financials:
    total_value: float = 0.0
    driver_cost: float = 0.0
    extras: list[ExtraService] = field(default_factory=list)


@dataclass
class PaymentStatus:
    deposit: bool = False    # 20% (reserva)
    pickup: bool = False     # 40% (coleta)
    delivery: bool = False   # 40% (entrega)


@dataclass
class OrderNote:
    content: str
    color: str = DEFAULT_NOTE_COLOR
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ServiceOrder:
    id: str = ""
    client_name: str = ""
    whatsapp: str = ""
    origin: str = ""
    destination: str = ""

    is_contract_signed: bool = False
    is_posted_marketplace: bool = False
    payment_status: PaymentStatus = field(default_factory=PaymentStatus)
    is_costs_paid: bool = False   # driver + extras already paid out by the company

    progress: ProgressStage = ProgressStage.LEAD
    financials: Financials = field(default_factory=Financials)

    pickup_date: str = ""
    delivery_forecast: str = ""
    notes: list[OrderNote] = field(default_factory=list)
    note_tag: str = DEFAULT_NOTE_COLOR
    created_at: datetime | None = None

    @property
    def is_finalized(self) -> bool:
        return bool(self.id) and self.created_at is not None


@dataclass
class Transaction:
    description: str
    amount: float
    type: TransactionType
    date: str
    category: str | None = None
    id: str = ""
