from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class CurrencyCode(str, Enum):
    brl = "BRL"
    usd = "USD"
    eur = "EUR"


CURRENCY_CODE_ENUM = SAEnum(
    CurrencyCode,
    name="currencycode",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    icon: Mapped[str] = mapped_column(String(16), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "name", "type", name="uq_category_user_name_type"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # Category is referenced by name, not id; the icon is a snapshot.
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    category_icon: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        Index("ix_transactions_user_created", "user_id", "created_at"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class DailyRollup(Base):
    """Per-day income/expense sums. ``month`` is zero-based (0 = January)."""

    __tablename__ = "daily_rollups"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "day", "month", "year", name="uq_daily_rollup_user_day"
        ),
        CheckConstraint("day BETWEEN 1 AND 31", name="ck_daily_rollup_day"),
        CheckConstraint("month BETWEEN 0 AND 11", name="ck_daily_rollup_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    income_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expense_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class MonthlyRollup(Base):
    """Per-month income/expense sums. ``month`` is zero-based (0 = January)."""

    __tablename__ = "monthly_rollups"
    __table_args__ = (
        UniqueConstraint("user_id", "month", "year", name="uq_monthly_rollup_user_month"),
        CheckConstraint("month BETWEEN 0 AND 11", name="ck_monthly_rollup_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    income_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expense_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class UserSettings(Base, TimestampMixin):
    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    currency: Mapped[CurrencyCode] = mapped_column(CURRENCY_CODE_ENUM, nullable=False)
