"""Persistence gateway: CRUD over orders, transactions and monthly goals.

``Gateway`` is the interface the lifecycle manager and the web layer talk
to; ``SqlGateway`` implements it over an SQLAlchemy ``AsyncSession``.  Every
call is scoped to one operator account, and any backend failure surfaces as
``GatewayError`` after the session is rolled back, so callers never see a
half-applied write.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .domain import (
    ExtraService, Financials, OrderNote, PaymentStatus,
    ServiceOrder, ServiceType, Transaction, TransactionType, _utcnow,
)
from .errors import AuthenticationError, GatewayError, NotFoundError
from .models import ExtraRow, GoalRow, NoteRow, OrderRow, TransactionRow
from .rules import derive_progress

logger = logging.getLogger("viacargo.gateway")


@dataclass
class Snapshot:
    orders: list[ServiceOrder] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    goals: dict[str, float] = field(default_factory=dict)


class Gateway(ABC):
    @abstractmethod
    async def fetch_orders(self) -> list[ServiceOrder]: ...

    @abstractmethod
    async def create_order(self, order: ServiceOrder) -> None: ...

    @abstractmethod
    async def update_order(self, order: ServiceOrder) -> None: ...

    @abstractmethod
    async def delete_order(self, order_id: str) -> None: ...

    @abstractmethod
    async def fetch_transactions(self) -> list[Transaction]: ...

    @abstractmethod
    async def create_transaction(self, transaction: Transaction) -> None: ...

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> None: ...

    @abstractmethod
    async def fetch_monthly_goals(self) -> dict[str, float]: ...

    @abstractmethod
    async def set_monthly_goal(self, month_key: str, value: float) -> None: ...

    async def fetch_snapshot(self) -> Snapshot:
        """Full re-fetch of all three collections."""
        return Snapshot(
            orders=await self.fetch_orders(),
            transactions=await self.fetch_transactions(),
            goals=await self.fetch_monthly_goals(),
        )


# ── Row <-> domain conversion ────────────────────────────────────────────────

def order_from_row(row: OrderRow) -> ServiceOrder:
    status = PaymentStatus(
        deposit=bool(row.payment_deposit),
        pickup=bool(row.payment_pickup),
        delivery=bool(row.payment_delivery),
    )
    return ServiceOrder(
        id=row.id,
        client_name=row.client_name,
        whatsapp=row.whatsapp or "",
        origin=row.origin or "",
        destination=row.destination or "",
        is_contract_signed=bool(row.is_contract_signed),
        is_posted_marketplace=bool(row.is_posted_marketplace),
        payment_status=status,
        is_costs_paid=bool(row.is_costs_paid),
        # The stored column is informational; the flags are authoritative
        progress=derive_progress(status),
        financials=Financials(
            total_value=row.total_value or 0.0,
            driver_cost=row.driver_cost or 0.0,
            extras=[
                ExtraService(id=e.extra_id, type=ServiceType(e.type), name=e.name or "", qty=e.qty or 0, cost=e.cost or 0.0)
                for e in row.extras
            ],
        ),
        pickup_date=row.pickup_date or "",
        delivery_forecast=row.delivery_forecast or "",
        notes=[OrderNote(content=n.content, color=n.color, created_at=n.created_at) for n in row.notes],
        note_tag=row.note_tag or "",
        created_at=row.created_at,
    )


def transaction_from_row(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        description=row.description,
        amount=row.amount,
        type=TransactionType(row.type),
        date=row.date,
        category=row.category,
    )


def _extra_rows(order: ServiceOrder) -> list[ExtraRow]:
    return [
        ExtraRow(extra_id=e.id, type=ServiceType(e.type).value, name=e.name, qty=e.qty, cost=e.cost)
        for e in order.financials.extras
    ]


def _note_rows(order: ServiceOrder, user_id: int) -> list[NoteRow]:
    return [
        NoteRow(user_id=user_id, content=n.content, color=n.color, created_at=n.created_at)
        for n in order.notes
    ]


def _apply_scalars(row: OrderRow, order: ServiceOrder) -> None:
    row.client_name = order.client_name
    row.whatsapp = order.whatsapp
    row.origin = order.origin
    row.destination = order.destination
    row.is_contract_signed = order.is_contract_signed
    row.is_posted_marketplace = order.is_posted_marketplace
    row.payment_deposit = order.payment_status.deposit
    row.payment_pickup = order.payment_status.pickup
    row.payment_delivery = order.payment_status.delivery
    row.is_costs_paid = order.is_costs_paid
    row.progress = int(order.progress)
    row.total_value = order.financials.total_value
    row.driver_cost = order.financials.driver_cost
    row.pickup_date = order.pickup_date
    row.delivery_forecast = order.delivery_forecast
    row.note_tag = order.note_tag


# ── SQLAlchemy implementation ────────────────────────────────────────────────

class SqlGateway(Gateway):
    def __init__(self, session: AsyncSession, account_id: int | None):
        self.session = session
        self.account_id = account_id

    def _account(self, operation: str) -> int:
        if self.account_id is None:
            raise AuthenticationError(operation)
        return self.account_id

    @asynccontextmanager
    async def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Gateway {operation} failed: {e}")
            raise GatewayError(operation, str(e)) from e

    async def _order_row(self, operation: str, order_id: str) -> OrderRow:
        account = self._account(operation)
        row = (await self.session.execute(
            select(OrderRow).where(OrderRow.id == order_id, OrderRow.user_id == account)
        )).scalar_one_or_none()
        if row is None:
            raise NotFoundError(operation, order_id)
        return row

    # ── Orders ──

    async def fetch_orders(self) -> list[ServiceOrder]:
        account = self._account("fetch_orders")
        async with self._guard("fetch_orders"):
            rows = (await self.session.execute(
                select(OrderRow).where(OrderRow.user_id == account)
                .order_by(OrderRow.pickup_date.asc(), OrderRow.created_at.asc())
            )).scalars().all()
        return [order_from_row(r) for r in rows]

    async def create_order(self, order: ServiceOrder) -> None:
        account = self._account("create_order")
        async with self._guard("create_order"):
            row = OrderRow(
                id=order.id, user_id=account,
                created_at=order.created_at or _utcnow(),
                extras=_extra_rows(order),
                notes=_note_rows(order, account),
            )
            _apply_scalars(row, order)
            self.session.add(row)
            await self.session.commit()
        logger.info(f"Created order {order.id}")

    async def update_order(self, order: ServiceOrder) -> None:
        account = self._account("update_order")
        async with self._guard("update_order"):
            row = await self._order_row("update_order", order.id)
            _apply_scalars(row, order)
            row.updated_at = _utcnow()
            # Extras and notes are replaced wholesale, never patched
            row.extras.clear()
            row.notes.clear()
            await self.session.flush()
            row.extras.extend(_extra_rows(order))
            row.notes.extend(_note_rows(order, account))
            await self.session.commit()
        logger.info(f"Updated order {order.id}")

    async def delete_order(self, order_id: str) -> None:
        async with self._guard("delete_order"):
            row = await self._order_row("delete_order", order_id)
            await self.session.delete(row)
            await self.session.commit()
        logger.info(f"Deleted order {order_id}")

    # ── Transactions ──

    async def fetch_transactions(self) -> list[Transaction]:
        account = self._account("fetch_transactions")
        async with self._guard("fetch_transactions"):
            rows = (await self.session.execute(
                select(TransactionRow).where(TransactionRow.user_id == account)
                .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
            )).scalars().all()
        return [transaction_from_row(r) for r in rows]

    async def create_transaction(self, transaction: Transaction) -> None:
        account = self._account("create_transaction")
        async with self._guard("create_transaction"):
            self.session.add(TransactionRow(
                id=transaction.id, user_id=account,
                description=transaction.description,
                amount=abs(transaction.amount),
                type=TransactionType(transaction.type).value,
                date=transaction.date,
                category=transaction.category,
            ))
            await self.session.commit()
        logger.info(f"Created transaction {transaction.id}")

    async def delete_transaction(self, transaction_id: str) -> None:
        account = self._account("delete_transaction")
        async with self._guard("delete_transaction"):
            row = (await self.session.execute(
                select(TransactionRow).where(TransactionRow.id == transaction_id, TransactionRow.user_id == account)
            )).scalar_one_or_none()
            if row is None:
                raise NotFoundError("delete_transaction", transaction_id)
            await self.session.delete(row)
            await self.session.commit()

    # ── Monthly goals ──

    async def fetch_monthly_goals(self) -> dict[str, float]:
        account = self._account("fetch_monthly_goals")
        async with self._guard("fetch_monthly_goals"):
            rows = (await self.session.execute(
                select(GoalRow.month_key, GoalRow.goal_value).where(GoalRow.user_id == account)
            )).all()
        return {r.month_key: r.goal_value for r in rows}

    async def set_monthly_goal(self, month_key: str, value: float) -> None:
        account = self._account("set_monthly_goal")
        async with self._guard("set_monthly_goal"):
            row = (await self.session.execute(
                select(GoalRow).where(GoalRow.user_id == account, GoalRow.month_key == month_key)
            )).scalar_one_or_none()
            if row is None:
                self.session.add(GoalRow(user_id=account, month_key=month_key, goal_value=value))
            else:
                row.goal_value = value
            await self.session.commit()
