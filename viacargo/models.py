from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    """Naive UTC now, for TIMESTAMP columns (not TIMESTAMPTZ)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


# ════════════════════════════════════════════════
# USER: the operator account; every row below is scoped to one
# ════════════════════════════════════════════════
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(254), unique=True, nullable=True)
    display_name: Mapped[str] = mapped_column(String(120), default="")
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    password_salt: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    supabase_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class UserSession(Base):
    """Persistent sessions stored in DB, survive server restarts."""
    __tablename__ = "user_sessions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    remember_me: Mapped[bool] = mapped_column(Boolean, default=False)
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)


# ════════════════════════════════════════════════
# SERVICE ORDER: one moving job
# ════════════════════════════════════════════════
class OrderRow(Base):
    __tablename__ = "service_orders"
    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    whatsapp: Mapped[str] = mapped_column(String(40), default="")
    origin: Mapped[str] = mapped_column(String(300), default="")
    destination: Mapped[str] = mapped_column(String(300), default="")

    is_contract_signed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_posted_marketplace: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_deposit: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_pickup: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_delivery: Mapped[bool] = mapped_column(Boolean, default=False)
    is_costs_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    total_value: Mapped[float] = mapped_column(Float, default=0.0)
    driver_cost: Mapped[float] = mapped_column(Float, default=0.0)

    # YYYY-MM-DD text, so month bucketing is a prefix match
    pickup_date: Mapped[str] = mapped_column(String(10), default="", index=True)
    delivery_forecast: Mapped[str] = mapped_column(String(10), default="")
    note_tag: Mapped[str] = mapped_column(String(16), default="#334155")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    extras: Mapped[list["ExtraRow"]] = relationship(
        back_populates="order", cascade="all, delete-orphan",
        lazy="selectin", order_by="ExtraRow.row_id",
    )
    notes: Mapped[list["NoteRow"]] = relationship(
        back_populates="order", cascade="all, delete-orphan",
        lazy="selectin", order_by="NoteRow.row_id",
    )


class ExtraRow(Base):
    __tablename__ = "extra_services"
    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    extra_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_order_id: Mapped[str] = mapped_column(
        String(40), ForeignKey("service_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str] = mapped_column(String(120), default="")
    qty: Mapped[int] = mapped_column(Integer, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)

    order: Mapped[OrderRow] = relationship(back_populates="extras")


class NoteRow(Base):
    __tablename__ = "order_notes"
    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_order_id: Mapped[str] = mapped_column(
        String(40), ForeignKey("service_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, default="")
    color: Mapped[str] = mapped_column(String(16), default="#334155")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    order: Mapped[OrderRow] = relationship(back_populates="notes")


# ════════════════════════════════════════════════
# TRANSACTION: ad-hoc cash movement not tied to an order
# ════════════════════════════════════════════════
class TransactionRow(Base):
    __tablename__ = "transactions"
    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)   # income | expense
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    category: Mapped[str | None] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


# ════════════════════════════════════════════════
# MONTHLY GOAL: one target per account per YYYY-MM
# ════════════════════════════════════════════════
class GoalRow(Base):
    __tablename__ = "monthly_goals"
    __table_args__ = (UniqueConstraint("user_id", "month_key", name="uq_monthly_goals_user_month"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    goal_value: Mapped[float] = mapped_column(Float, nullable=False)
