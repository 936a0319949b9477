"""
Shared fixtures for the ViaCargo test suite.

The web app builds its engine from the environment at import time, so the
database and operator account are pinned here, before any test module
imports ``viacargo.main``.
"""

import asyncio
import os
import tempfile
from datetime import datetime

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="viacargo-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'web.db')}"
os.environ["VIACARGO_OPERATOR_USERNAME"] = "operador"
os.environ["VIACARGO_OPERATOR_PASSWORD"] = "segredo-123"
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("SUPABASE_ANON_KEY", None)

from viacargo.clock import FixedClock  # noqa: E402
from viacargo.db import create_tables, make_engine, make_sessionmaker  # noqa: E402
from viacargo.domain import (  # noqa: E402
    ExtraService, Financials, PaymentStatus, ServiceOrder, ServiceType, Transaction, TransactionType,
)
from viacargo.rules import derive_progress  # noqa: E402


def build_order(
    id: str = "OS-2024-TEST",
    client_name: str = "Cliente",
    pickup_date: str = "2024-06-05",
    total_value: float = 1000.0,
    driver_cost: float = 0.0,
    extras=(),
    deposit: bool = False,
    pickup: bool = False,
    delivery: bool = False,
    is_costs_paid: bool = False,
    created_at: datetime | None = datetime(2024, 6, 1, 9, 0),
    **fields,
) -> ServiceOrder:
    status = PaymentStatus(deposit=deposit, pickup=pickup, delivery=delivery)
    return ServiceOrder(
        id=id,
        client_name=client_name,
        pickup_date=pickup_date,
        payment_status=status,
        progress=derive_progress(status),
        is_costs_paid=is_costs_paid,
        financials=Financials(total_value=total_value, driver_cost=driver_cost, extras=list(extras)),
        created_at=created_at,
        **fields,
    )


@pytest.fixture
def make_order():
    return build_order


@pytest.fixture
def make_extra():
    def _make(type=ServiceType.HELPER, qty=1, cost=100.0, name=""):
        return ExtraService(type=type, name=name, qty=qty, cost=cost)
    return _make


@pytest.fixture
def make_transaction():
    def _make(amount=50.0, type=TransactionType.EXPENSE, date="2024-06-20", description="Combustível", id="TX-1"):
        return Transaction(description=description, amount=amount, type=type, date=date, id=id)
    return _make


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 6, 10, 9, 0, 0))


@pytest.fixture
def run_db(tmp_path):
    """Run ``body(sessionmaker)`` against a fresh SQLite file."""
    def _run(body):
        async def _main():
            engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'scratch.db'}")
            await create_tables(engine)
            try:
                return await body(make_sessionmaker(engine))
            finally:
                await engine.dispose()
        return asyncio.run(_main())
    return _run
