"""Order lifecycle manager: the editable draft of one service order.

The manager owns a single draft while an order is being created or edited.
Every write goes through it so the invariants hold at all times:

* writing any payment milestone recomputes ``progress`` on the spot;
* each labor role (helper, assembler, packer) has at most one extras entry,
  kept while its quantity or unit cost is non-zero and dropped once both are;
* quantities and costs are clamped to be non-negative.

The gateway is only touched by ``submit`` and ``confirm_delete``.  When the
gateway call fails the draft is left exactly as it was, so the user can
retry; nothing is retried automatically.
"""

from __future__ import annotations

import copy
import logging
import math
import re
import secrets
import uuid
from dataclasses import dataclass, field

from .clock import Clock, SystemClock
from .domain import (
    DEFAULT_NOTE_COLOR, ROLE_LABELS, ROLE_TYPES, ExtraService, OrderNote,
    ServiceOrder, ServiceType, _utcnow,
)
from .errors import GatewayError, ValidationError, ViaCargoError
from .gateway import Gateway
from .rules import calculate_costs, calculate_profit, derive_progress
from .utils import parse_iso_date

logger = logging.getLogger("viacargo.lifecycle")

_HEX_COLOR = re.compile(r"#[0-9a-fA-F]{6}")

# Scalar fields a user may edit directly.  payment_status and progress are
# deliberately absent: the former has its own setter, the latter is derived.
EDITABLE_FIELDS = {
    "client_name", "whatsapp", "origin", "destination",
    "is_contract_signed", "is_posted_marketplace", "is_costs_paid",
    "pickup_date", "delivery_forecast", "note_tag",
}
MILESTONES = ("deposit", "pickup", "delivery")
MAX_AMOUNT = 1_000_000_000.0
MAX_QUANTITY = 10_000


def generate_order_id(year: int) -> str:
    """``OS-<year>-<12 hex>``: year-prefixed for humans, unique in practice."""
    return f"OS-{year}-{uuid.uuid4().hex[:12].upper()}"


@dataclass
class OrderDraft:
    order: ServiceOrder
    extras: list[ExtraService] = field(default_factory=list)
    is_new: bool = True
    note_color: str = DEFAULT_NOTE_COLOR


class OrderLifecycleManager:
    def __init__(self, gateway: Gateway, clock: Clock | None = None, id_factory=generate_order_id):
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.id_factory = id_factory
        self._draft: OrderDraft | None = None
        self.pending_delete: str | None = None

    # ── Draft access ──

    @property
    def draft(self) -> OrderDraft:
        if self._draft is None:
            raise ViaCargoError("No order is being edited")
        return self._draft

    @property
    def is_editing(self) -> bool:
        return self._draft is not None

    def start_new(self) -> OrderDraft:
        self._draft = OrderDraft(order=ServiceOrder(), extras=[], is_new=True)
        self.pending_delete = None
        return self._draft

    def load(self, order: ServiceOrder) -> OrderDraft:
        snapshot = copy.deepcopy(order)
        self._draft = OrderDraft(
            order=snapshot,
            extras=copy.deepcopy(snapshot.financials.extras),
            is_new=False,
        )
        self.pending_delete = None
        return self._draft

    def close(self) -> None:
        self._draft = None
        self.pending_delete = None

    # ── Scalar fields ──

    def set_field(self, name: str, value) -> None:
        if name not in EDITABLE_FIELDS:
            raise ValueError(f"{name!r} is not an editable order field")
        setattr(self.draft.order, name, value)

    def update_fields(self, **fields) -> None:
        for name, value in fields.items():
            self.set_field(name, value)

    def set_total_value(self, value: float) -> None:
        self.draft.order.financials.total_value = value

    def set_driver_cost(self, value: float) -> None:
        self.draft.order.financials.driver_cost = value

    # ── Payment milestones ──

    def set_payment(self, milestone: str, paid: bool) -> None:
        if milestone not in MILESTONES:
            raise ValueError(f"Unknown payment milestone {milestone!r}")
        setattr(self.draft.order.payment_status, milestone, bool(paid))
        self._sync_progress()

    def set_payment_status(self, deposit: bool | None = None, pickup: bool | None = None,
                           delivery: bool | None = None) -> None:
        status = self.draft.order.payment_status
        if deposit is not None:
            status.deposit = bool(deposit)
        if pickup is not None:
            status.pickup = bool(pickup)
        if delivery is not None:
            status.delivery = bool(delivery)
        self._sync_progress()

    def toggle_payment(self, milestone: str) -> None:
        if milestone not in MILESTONES:
            raise ValueError(f"Unknown payment milestone {milestone!r}")
        self.set_payment(milestone, not getattr(self.draft.order.payment_status, milestone))

    def _sync_progress(self) -> None:
        order = self.draft.order
        derived = derive_progress(order.payment_status)
        if order.progress != derived:
            order.progress = derived

    # ── Labor roles (one entry per role) ──

    def role_entry(self, role: ServiceType) -> ExtraService | None:
        role = ServiceType(role)
        return next((e for e in self.draft.extras if e.type == role), None)

    def role_data(self, role: ServiceType) -> tuple[int, float]:
        entry = self.role_entry(role)
        return (entry.qty, entry.cost) if entry else (0, 0.0)

    def set_role_quantity(self, role: ServiceType, qty) -> None:
        self._update_role(role, qty=qty)

    def set_role_cost(self, role: ServiceType, cost) -> None:
        self._update_role(role, cost=cost)

    def set_role(self, role: ServiceType, qty, cost) -> None:
        self._update_role(role, qty=qty, cost=cost)

    def _update_role(self, role: ServiceType, qty=None, cost=None) -> None:
        role = ServiceType(role)
        if role not in ROLE_TYPES:
            raise ValueError(f"{role.value!r} is not a labor role")
        current_qty, current_cost = self.role_data(role)
        new_qty = max(0, int(qty)) if qty is not None else current_qty
        new_cost = max(0.0, float(cost)) if cost is not None else current_cost

        extras = self.draft.extras
        existing = self.role_entry(role)
        if new_qty > 0 or new_cost > 0:
            entry = ExtraService(
                id=existing.id if existing else f"auto-{role.value}-{secrets.token_hex(4)}",
                type=role, name=ROLE_LABELS[role], qty=new_qty, cost=new_cost,
            )
            if existing:
                extras[extras.index(existing)] = entry
            else:
                extras.append(entry)
        elif existing:
            extras.remove(existing)

    # ── Generic "other" extras ──

    def add_generic_extra(self, name: str = "", qty=1, cost=0.0, extra_id: str = "") -> ExtraService:
        extra = ExtraService(
            type=ServiceType.OTHER, name=name,
            qty=max(0, int(qty)), cost=max(0.0, float(cost)),
        )
        if extra_id:
            extra.id = extra_id
        self.draft.extras.append(extra)
        return extra

    def _generic(self, extra_id: str) -> ExtraService:
        for e in self.draft.extras:
            if e.id == extra_id and e.type == ServiceType.OTHER:
                return e
        raise KeyError(extra_id)

    def update_generic_extra(self, extra_id: str, name: str | None = None, qty=None, cost=None) -> None:
        extra = self._generic(extra_id)
        if name is not None:
            extra.name = name
        if qty is not None:
            extra.qty = max(0, int(qty))
        if cost is not None:
            extra.cost = max(0.0, float(cost))

    def remove_generic_extra(self, extra_id: str) -> None:
        self.draft.extras.remove(self._generic(extra_id))

    def clear_generic_extras(self) -> None:
        self.draft.extras[:] = [e for e in self.draft.extras if e.type != ServiceType.OTHER]

    # ── Notes ──

    def select_note_color(self, color: str) -> None:
        if not _HEX_COLOR.fullmatch(color or ""):
            raise ValueError(f"Not a #rrggbb color: {color!r}")
        self.draft.note_color = color.lower()

    def add_note(self, content: str) -> OrderNote | None:
        content = (content or "").strip()
        if not content:
            return None
        note = OrderNote(content=content, color=self.draft.note_color, created_at=_utcnow())
        self.draft.order.notes.append(note)
        return note

    def set_notes(self, notes: list[OrderNote]) -> None:
        self.draft.order.notes = list(notes)

    def remove_note(self, index: int) -> None:
        notes = self.draft.order.notes
        if not 0 <= index < len(notes):
            raise IndexError(index)
        del notes[index]

    # ── Live preview ──

    def _working_financials(self):
        financials = copy.copy(self.draft.order.financials)
        financials.extras = self.draft.extras
        return financials

    def preview_costs(self) -> float:
        return calculate_costs(self._working_financials())

    def preview_profit(self) -> float:
        return calculate_profit(self._working_financials())

    # ── Submission ──

    def validate(self) -> None:
        order = self.draft.order
        if not order.client_name.strip():
            raise ValidationError("client_name", "Informe o nome do cliente.")
        for name, value in (("total_value", order.financials.total_value),
                            ("driver_cost", order.financials.driver_cost)):
            if not math.isfinite(value) or value > MAX_AMOUNT:
                raise ValidationError(name, "Valor numérico inválido.")
        for extra in self.draft.extras:
            if extra.qty > MAX_QUANTITY or not math.isfinite(extra.cost) or extra.cost > MAX_AMOUNT:
                raise ValidationError("extras", f"Quantidade ou custo inválido em {extra.name or 'serviço extra'}.")
        if order.financials.total_value < 0:
            raise ValidationError("total_value", "O valor total não pode ser negativo.")
        if order.financials.driver_cost < 0:
            raise ValidationError("driver_cost", "O custo do motorista não pode ser negativo.")
        pickup = parse_iso_date(order.pickup_date)
        if pickup is None:
            raise ValidationError("pickup_date", "Informe uma data de coleta válida (AAAA-MM-DD).")
        if order.delivery_forecast:
            forecast = parse_iso_date(order.delivery_forecast)
            if forecast is None:
                raise ValidationError("delivery_forecast", "Previsão de entrega inválida (AAAA-MM-DD).")
            if forecast < pickup:
                raise ValidationError("delivery_forecast", "A previsão de entrega é anterior à coleta.")

    def finalize(self) -> ServiceOrder:
        """Submission-ready copy of the draft; the draft itself is not touched."""
        self.validate()
        final = copy.deepcopy(self.draft.order)
        final.client_name = final.client_name.strip()
        final.financials.extras = copy.deepcopy(self.draft.extras)
        final.progress = derive_progress(final.payment_status)
        if not final.id:
            final.id = self.id_factory(self.clock.now().year)
        if final.created_at is None:
            final.created_at = _utcnow()
        return final

    async def submit(self) -> ServiceOrder:
        final = self.finalize()
        is_new = self.draft.is_new
        try:
            if is_new:
                await self.gateway.create_order(final)
            else:
                await self.gateway.update_order(final)
        except GatewayError as e:
            logger.error(f"Saving order {final.id} failed, draft kept: {e}")
            raise
        self.close()
        return final

    # ── Deletion (two-step) ──

    def request_delete(self) -> str:
        draft = self.draft
        if draft.is_new or not draft.order.id:
            raise ViaCargoError("Only a saved order can be deleted")
        self.pending_delete = draft.order.id
        return self.pending_delete

    def cancel_delete(self) -> None:
        self.pending_delete = None

    async def confirm_delete(self) -> str:
        if self.pending_delete is None:
            raise ViaCargoError("Deletion was not requested")
        order_id = self.pending_delete
        try:
            await self.gateway.delete_order(order_id)
        except GatewayError as e:
            logger.error(f"Deleting order {order_id} failed: {e}")
            raise
        self.close()
        return order_id
