from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Optional, Union

from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from buckets import day_keys, fill_buckets, month_keys
from config import get_settings
from database import unit_of_work
from errors import ConflictError, NotFoundError, UnauthorizedError
from models import (
    Category,
    CurrencyCode,
    DailyRollup,
    MonthlyRollup,
    Transaction,
    TransactionType,
    UserSettings,
)
from money import currency_symbol, format_amount, from_cents, to_cents
from periods import local_today, month_period, resolve_range
from schemas import (
    Balance,
    CategoryIn,
    CategoryTotal,
    HistoryPoint,
    HistoryQuery,
    MonthlyStatement,
    SetupIn,
    SetupSuggestions,
    StatementDay,
    SuggestedCategoryIn,
    TransactionHistoryItem,
    TransactionIn,
    TransactionOut,
    UserSettingsIn,
    UserSettingsOut,
)

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str, None]

SUGGESTION_MAX_DISTANCE = 2

# Starter roster used when the wizard is submitted without categories.
DEFAULT_INCOME_CATEGORIES = [
    ("Salário", "💰"),
    ("Freelance", "💻"),
    ("Investimentos", "📈"),
    ("Aluguel", "🏠"),
    ("Dividendos", "💵"),
    ("Presente", "🎁"),
    ("Outros", "📋"),
]

DEFAULT_EXPENSE_CATEGORIES = [
    ("Alimentação", "🍽️"),
    ("Mercado", "🛒"),
    ("Transporte", "🚗"),
    ("Moradia", "🏠"),
    ("Saúde", "⚕️"),
    ("Educação", "📚"),
    ("Lazer", "🎮"),
    ("Roupas", "👕"),
    ("Utilidades", "💡"),
    ("Internet", "📶"),
    ("Streaming", "📺"),
    ("Outros", "📋"),
]

SUGGESTED_INCOME_CATEGORIES = [
    ("Salário", "💰"),
    ("Freelance", "💻"),
    ("Investimentos", "📈"),
    ("Aluguel", "🏠"),
    ("Dividendos", "💵"),
    ("Presente", "🎁"),
    ("Bônus", "🎯"),
    ("Comissão", "💎"),
    ("Reembolso", "💱"),
    ("Prêmio", "🏆"),
    ("Venda", "🏷️"),
]

SUGGESTED_EXPENSE_CATEGORIES = [
    ("Alimentação", "🍽️"),
    ("Mercado", "🛒"),
    ("Transporte", "🚗"),
    ("Moradia", "🏠"),
    ("Aluguel", "🏢"),
    ("Condomínio", "🏘️"),
    ("IPTU", "📑"),
    ("Água", "💧"),
    ("Luz", "💡"),
    ("Gás", "🔥"),
    ("Internet", "📶"),
    ("Telefone", "☎️"),
    ("Celular", "📱"),
    ("Saúde", "⚕️"),
    ("Plano de Saúde", "🏥"),
    ("Remédios", "💊"),
    ("Academia", "🏋️‍♂️"),
    ("Educação", "📚"),
    ("Cursos", "👨‍🎓"),
    ("Material Escolar", "✏️"),
    ("Lazer", "🎮"),
    ("Viagem", "✈️"),
    ("Cinema", "🎬"),
    ("Teatro", "🎭"),
    ("Restaurante", "🍽️"),
    ("Roupas", "👕"),
    ("Calçados", "👞"),
    ("Acessórios", "👜"),
    ("Streaming", "📺"),
    ("Netflix", "🎬"),
    ("Spotify", "🎵"),
    ("Prime Video", "🎥"),
    ("Disney+", "🎪"),
    ("HBO Max", "🎦"),
    ("Manutenção", "🔧"),
    ("Limpeza", "🧹"),
    ("Presente", "🎁"),
    ("Pet", "🐾"),
    ("Seguro", "🔒"),
]


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise UnauthorizedError("Authentication required")
    return user_id


def signed_cents(txn: Transaction) -> int:
    if txn.type == TransactionType.income:
        return txn.amount_cents
    return -txn.amount_cents


def transaction_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        amount=from_cents(txn.amount_cents),
        type=txn.type,
        category=txn.category,
        category_icon=txn.category_icon,
        description=txn.description,
        date=txn.date,
        created_at=txn.created_at,
        updated_at=txn.updated_at,
    )


def _rollup_keys(user_id: str, txn_date: date) -> tuple[dict, dict]:
    daily = {
        "user_id": user_id,
        "day": txn_date.day,
        "month": txn_date.month - 1,
        "year": txn_date.year,
    }
    monthly = {
        "user_id": user_id,
        "month": txn_date.month - 1,
        "year": txn_date.year,
    }
    return daily, monthly


def apply_rollup_delta(
    session: Session,
    model: type[Union[DailyRollup, MonthlyRollup]],
    keys: dict[str, object],
    income_delta: int,
    expense_delta: int,
) -> None:
    """Add the deltas to the rollup row identified by ``keys``, creating it if absent.

    The increment is evaluated by the database so concurrent writers to the
    same bucket never lose updates.
    """
    dialect = session.get_bind().dialect.name
    if dialect in ("sqlite", "postgresql"):
        insert_fn = sqlite.insert if dialect == "sqlite" else postgresql.insert
        stmt = insert_fn(model).values(
            **keys, income_cents=income_delta, expense_cents=expense_delta
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=list(keys),
            set_={
                "income_cents": model.income_cents + stmt.excluded.income_cents,
                "expense_cents": model.expense_cents + stmt.excluded.expense_cents,
            },
        )
        session.execute(stmt)
        return

    conditions = [getattr(model, name) == value for name, value in keys.items()]
    existing_id = session.scalar(select(model.id).where(*conditions).with_for_update())
    if existing_id is None:
        session.add(
            model(**keys, income_cents=income_delta, expense_cents=expense_delta)
        )
        session.flush()
        return
    session.execute(
        update(model)
        .where(model.id == existing_id)
        .values(
            income_cents=model.income_cents + income_delta,
            expense_cents=model.expense_cents + expense_delta,
        )
    )


def apply_to_rollups(
    session: Session,
    user_id: str,
    txn_type: TransactionType,
    txn_date: date,
    amount_cents: int,
    *,
    sign: int = 1,
) -> None:
    income_delta = amount_cents * sign if txn_type == TransactionType.income else 0
    expense_delta = amount_cents * sign if txn_type == TransactionType.expense else 0
    daily_keys, monthly_keys = _rollup_keys(user_id, txn_date)
    apply_rollup_delta(session, DailyRollup, daily_keys, income_delta, expense_delta)
    apply_rollup_delta(
        session, MonthlyRollup, monthly_keys, income_delta, expense_delta
    )


def prune_empty_rollups(session: Session, user_id: str, dates: set[date]) -> None:
    for txn_date in dates:
        daily_keys, monthly_keys = _rollup_keys(user_id, txn_date)
        for model, keys in ((DailyRollup, daily_keys), (MonthlyRollup, monthly_keys)):
            session.execute(
                delete(model).where(
                    *(getattr(model, name) == value for name, value in keys.items()),
                    model.income_cents == 0,
                    model.expense_cents == 0,
                )
            )


def rebuild_rollups(session: Session, user_id: str) -> None:
    """Recompute both rollup tables for a user from the ledger."""
    user_id = _require_user(user_id)
    with unit_of_work(session):
        session.execute(delete(DailyRollup).where(DailyRollup.user_id == user_id))
        session.execute(delete(MonthlyRollup).where(MonthlyRollup.user_id == user_id))
        rows = session.execute(
            select(Transaction.type, Transaction.date, Transaction.amount_cents).where(
                Transaction.user_id == user_id
            )
        ).all()
        for row in rows:
            apply_to_rollups(session, user_id, row.type, row.date, row.amount_cents)
    logger.info(f"rollups_rebuilt: user={user_id} transactions={len(rows)}")


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def list_all(self, txn_type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if txn_type:
            stmt = stmt.where(Category.type == txn_type)
        return self.session.scalars(stmt).all()

    def find(self, name: str, txn_type: TransactionType) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == txn_type,
                Category.name == name,
            )
        )

    def get(self, name: str, txn_type: TransactionType) -> Category:
        category = self.find(name, txn_type)
        if not category:
            raise NotFoundError("category not found")
        return category

    def closest_name(self, name: str, txn_type: TransactionType) -> Optional[str]:
        wanted = name.strip().lower()
        best: Optional[str] = None
        best_distance: Optional[int] = None
        for category in self.list_all(txn_type):
            dist = int(Levenshtein.distance(wanted, category.name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best, best_distance = category.name, dist
        if best_distance is not None and best_distance <= SUGGESTION_MAX_DISTANCE:
            return best
        return None

    def _name_taken(
        self, name: str, txn_type: TransactionType, exclude_id: Optional[int] = None
    ) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == txn_type,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(data.name, data.type):
            raise ConflictError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
        )
        try:
            with unit_of_work(self.session):
                self.session.add(category)
        except IntegrityError as exc:
            raise ConflictError("Category with this name already exists") from exc
        logger.info(
            f"category_created: user={self.user_id} type={data.type.value} name={category.name}"
        )
        return category

    def update(
        self, current_name: str, current_type: TransactionType, data: CategoryIn
    ) -> Category:
        category = self.get(current_name, current_type)
        if self._name_taken(data.name, data.type, exclude_id=category.id):
            raise ConflictError("Category with this name already exists")
        try:
            with unit_of_work(self.session):
                category.name = data.name.strip()
                category.type = data.type
                category.icon = data.icon
        except IntegrityError as exc:
            raise ConflictError("Category with this name already exists") from exc
        logger.info(
            f"category_updated: user={self.user_id} from={current_type.value}/{current_name} "
            f"to={data.type.value}/{category.name}"
        )
        return category

    def delete(self, name: str, txn_type: TransactionType) -> None:
        # Transactions keep their own copy of the category name and icon.
        category = self.get(name, txn_type)
        with unit_of_work(self.session):
            self.session.delete(category)
        logger.info(
            f"category_deleted: user={self.user_id} type={txn_type.value} name={name}"
        )


class UserSettingsService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def _find(self) -> Optional[UserSettings]:
        return self.session.scalar(
            select(UserSettings).where(UserSettings.user_id == self.user_id)
        )

    def get(self) -> UserSettings:
        settings_row = self._find()
        if settings_row:
            return settings_row
        settings_row = UserSettings(
            user_id=self.user_id,
            currency=CurrencyCode(get_settings().default_currency),
        )
        try:
            with unit_of_work(self.session):
                self.session.add(settings_row)
        except IntegrityError:
            # Another request created the row first.
            existing = self._find()
            if existing is None:
                raise
            return existing
        logger.info(
            f"user_settings_created: user={self.user_id} currency={settings_row.currency.value}"
        )
        return settings_row

    def update(self, data: UserSettingsIn) -> UserSettings:
        settings_row = self.get()
        with unit_of_work(self.session):
            settings_row.currency = data.currency
        logger.info(
            f"user_settings_updated: user={self.user_id} currency={data.currency.value}"
        )
        return settings_row

    def describe(self) -> UserSettingsOut:
        settings_row = self.get()
        return UserSettingsOut(
            currency=settings_row.currency,
            symbol=currency_symbol(settings_row.currency),
        )


class SetupService:
    """First-run setup: the user's currency plus a fresh category roster."""

    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    @staticmethod
    def suggestions() -> SetupSuggestions:
        return SetupSuggestions(
            income=[
                SuggestedCategoryIn(name=name, icon=icon)
                for name, icon in SUGGESTED_INCOME_CATEGORIES
            ],
            expense=[
                SuggestedCategoryIn(name=name, icon=icon)
                for name, icon in SUGGESTED_EXPENSE_CATEGORIES
            ],
        )

    def _roster(self, data: SetupIn) -> list[tuple[TransactionType, str, str]]:
        income = data.income_categories
        expense = data.expense_categories
        if income is None and expense is None:
            return [
                (TransactionType.income, name, icon)
                for name, icon in DEFAULT_INCOME_CATEGORIES
            ] + [
                (TransactionType.expense, name, icon)
                for name, icon in DEFAULT_EXPENSE_CATEGORIES
            ]
        return [
            (TransactionType.income, item.name, item.icon) for item in income or []
        ] + [
            (TransactionType.expense, item.name, item.icon) for item in expense or []
        ]

    def apply(self, data: SetupIn) -> list[Category]:
        entries = self._roster(data)
        seen: set[tuple[TransactionType, str]] = set()
        for txn_type, name, _icon in entries:
            key = (txn_type, name.strip().lower())
            if key in seen:
                raise ConflictError(f"Duplicate {txn_type.value} category: {name.strip()}")
            seen.add(key)

        categories = [
            Category(user_id=self.user_id, name=name.strip(), type=txn_type, icon=icon)
            for txn_type, name, icon in entries
        ]
        with unit_of_work(self.session):
            settings_row = self.session.scalar(
                select(UserSettings).where(UserSettings.user_id == self.user_id)
            )
            if settings_row is None:
                self.session.add(
                    UserSettings(user_id=self.user_id, currency=data.currency)
                )
            else:
                settings_row.currency = data.currency
            self.session.execute(
                delete(Category)
                .where(Category.user_id == self.user_id)
                .execution_options(synchronize_session="fetch")
            )
            self.session.add_all(categories)
        logger.info(
            f"setup_applied: user={self.user_id} currency={data.currency.value} "
            f"categories={len(categories)}"
        )
        return categories


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def _resolve_category(self, name: str, txn_type: TransactionType) -> Category:
        categories = CategoryService(self.session, self.user_id)
        category = categories.find(name, txn_type)
        if category:
            return category
        message = "category not found"
        suggestion = categories.closest_name(name, txn_type)
        if suggestion:
            message = f"{message} (did you mean '{suggestion}'?)"
        raise NotFoundError(message)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def record(self, data: TransactionIn) -> Transaction:
        category = self._resolve_category(data.category, data.type)
        amount_cents = to_cents(data.amount)
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            amount_cents=amount_cents,
            category=category.name,
            category_icon=category.icon,
            description=data.description,
        )
        with unit_of_work(self.session):
            self.session.add(txn)
            self.session.flush()
            apply_to_rollups(
                self.session, self.user_id, data.type, data.date, amount_cents
            )
        logger.info(
            f"transaction_recorded: user={self.user_id} id={txn.id} "
            f"type={data.type.value} date={data.date.isoformat()}"
        )
        return txn

    def edit(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        category = self._resolve_category(data.category, data.type)
        amount_cents = to_cents(data.amount)
        old_date = txn.date
        with unit_of_work(self.session):
            apply_to_rollups(
                self.session,
                self.user_id,
                txn.type,
                txn.date,
                txn.amount_cents,
                sign=-1,
            )
            txn.date = data.date
            txn.type = data.type
            txn.amount_cents = amount_cents
            txn.category = category.name
            txn.category_icon = category.icon
            txn.description = data.description
            self.session.flush()
            apply_to_rollups(
                self.session, self.user_id, data.type, data.date, amount_cents
            )
            prune_empty_rollups(self.session, self.user_id, {old_date, data.date})
        logger.info(
            f"transaction_edited: user={self.user_id} id={txn.id} "
            f"date={old_date.isoformat()}->{data.date.isoformat()}"
        )
        return txn

    def remove(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        txn_date = txn.date
        with unit_of_work(self.session):
            apply_to_rollups(
                self.session,
                self.user_id,
                txn.type,
                txn.date,
                txn.amount_cents,
                sign=-1,
            )
            self.session.delete(txn)
            self.session.flush()
            prune_empty_rollups(self.session, self.user_id, {txn_date})
        logger.info(f"transaction_removed: user={self.user_id} id={transaction_id}")

    def history(self, start: DateLike, end: DateLike) -> list[TransactionHistoryItem]:
        period = resolve_range(start, end)
        currency = UserSettingsService(self.session, self.user_id).get().currency
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return [
            TransactionHistoryItem(
                **transaction_out(txn).model_dump(),
                formatted_amount=format_amount(txn.amount_cents, currency),
            )
            for txn in self.session.scalars(stmt).all()
        ]

    def recent(self, limit: int = 10) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def balance(self, start: DateLike, end: DateLike) -> Balance:
        period = resolve_range(start, end)
        rows = self.session.execute(
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.type)
        ).all()
        totals = {row.type: int(row.total or 0) for row in rows}
        return Balance(
            income=from_cents(totals.get(TransactionType.income, 0)),
            expense=from_cents(totals.get(TransactionType.expense, 0)),
        )

    def category_breakdown(self, start: DateLike, end: DateLike) -> list[CategoryTotal]:
        period = resolve_range(start, end)
        total = func.sum(Transaction.amount_cents)
        rows = self.session.execute(
            select(
                Transaction.type,
                Transaction.category,
                Transaction.category_icon,
                total.label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.type, Transaction.category, Transaction.category_icon)
            .order_by(total.desc(), Transaction.category)
        ).all()
        return [
            CategoryTotal(
                type=row.type,
                category=row.category,
                category_icon=row.category_icon,
                total_amount=from_cents(int(row.total or 0)),
            )
            for row in rows
        ]


class HistoryService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def monthly(self, month: int, year: int) -> list[HistoryPoint]:
        rows = self.session.execute(
            select(
                DailyRollup.day,
                func.sum(DailyRollup.income_cents).label("income_cents"),
                func.sum(DailyRollup.expense_cents).label("expense_cents"),
            )
            .where(
                DailyRollup.user_id == self.user_id,
                DailyRollup.month == month,
                DailyRollup.year == year,
            )
            .group_by(DailyRollup.day)
            .order_by(DailyRollup.day)
        ).all()
        if not rows:
            return []
        return [
            HistoryPoint(
                day=bucket.key,
                month=month,
                year=year,
                income=from_cents(bucket.income_cents),
                expense=from_cents(bucket.expense_cents),
            )
            for bucket in fill_buckets(rows, day_keys(month, year), lambda r: r.day)
        ]

    def yearly(self, year: int) -> list[HistoryPoint]:
        rows = self.session.execute(
            select(
                MonthlyRollup.month,
                func.sum(MonthlyRollup.income_cents).label("income_cents"),
                func.sum(MonthlyRollup.expense_cents).label("expense_cents"),
            )
            .where(MonthlyRollup.user_id == self.user_id, MonthlyRollup.year == year)
            .group_by(MonthlyRollup.month)
            .order_by(MonthlyRollup.month)
        ).all()
        if not rows:
            return []
        return [
            HistoryPoint(
                month=bucket.key,
                year=year,
                income=from_cents(bucket.income_cents),
                expense=from_cents(bucket.expense_cents),
            )
            for bucket in fill_buckets(rows, month_keys(), lambda r: r.month)
        ]

    def history(self, query: HistoryQuery) -> list[HistoryPoint]:
        if query.timeframe == "month":
            return self.monthly(query.month, query.year)
        return self.yearly(query.year)

    def periods(self) -> list[int]:
        years = self.session.scalars(
            select(DailyRollup.year)
            .where(DailyRollup.user_id == self.user_id)
            .distinct()
            .order_by(DailyRollup.year.desc())
        ).all()
        if not years:
            return [local_today().year]
        return list(years)


class StatementService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def monthly_statement(self, today: Optional[date] = None) -> MonthlyStatement:
        """Per-day totals and running balance for the month containing ``today``.

        Only days with at least one transaction are listed.
        """
        period = month_period(today)
        transactions = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
        ).all()

        by_day: dict[date, list[Transaction]] = defaultdict(list)
        for txn in transactions:
            by_day[txn.date].append(txn)

        days: list[StatementDay] = []
        accumulated = 0
        for day in sorted(by_day):
            day_total = sum(signed_cents(txn) for txn in by_day[day])
            accumulated += day_total
            days.append(
                StatementDay(
                    date=day,
                    transactions=[transaction_out(txn) for txn in by_day[day]],
                    day_total=from_cents(day_total),
                    accumulated_balance=from_cents(accumulated),
                )
            )
        return MonthlyStatement(
            month_total=from_cents(sum(signed_cents(txn) for txn in transactions)),
            days=days,
        )
