from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from errors import ConflictError, NotFoundError, ValidationError
from models import Category, CurrencyCode, Transaction, TransactionType, UserSettings
from schemas import (
    CategoryIn,
    SetupIn,
    SuggestedCategoryIn,
    TransactionIn,
    UserSettingsIn,
    parse_payload,
)
from services import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    SUGGESTED_EXPENSE_CATEGORIES,
    SUGGESTED_INCOME_CATEGORIES,
    CategoryService,
    MetricsService,
    SetupService,
    TransactionService,
    UserSettingsService,
)


USER = "user_categories"


def test_create_rejects_duplicate_name_per_type_case_insensitive() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session, USER)
        categories.create(CategoryIn(name="Gift", type=TransactionType.expense, icon="🎁"))
        # same name is allowed once per type
        categories.create(CategoryIn(name="Gift", type=TransactionType.income, icon="🎁"))

        with pytest.raises(ConflictError):
            categories.create(
                CategoryIn(name="gift", type=TransactionType.expense, icon="🎀")
            )

        # other users have their own roster
        CategoryService(session, "other_user").create(
            CategoryIn(name="Gift", type=TransactionType.expense, icon="🎁")
        )

        names = [(c.type, c.name) for c in categories.list_all()]
        assert sorted(names) == [
            (TransactionType.expense, "Gift"),
            (TransactionType.income, "Gift"),
        ]
        assert [c.type for c in categories.list_all(TransactionType.expense)] == [
            TransactionType.expense
        ]


def test_update_is_keyed_by_old_name_and_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session, USER)
        categories.create(
            CategoryIn(name="Market", type=TransactionType.expense, icon="🛒")
        )
        categories.create(
            CategoryIn(name="Transport", type=TransactionType.expense, icon="🚗")
        )

        updated = categories.update(
            "Market",
            TransactionType.expense,
            CategoryIn(name="Groceries", type=TransactionType.expense, icon="🥦"),
        )
        assert updated.name == "Groceries"
        assert categories.get("Groceries", TransactionType.expense).icon == "🥦"

        with pytest.raises(NotFoundError):
            categories.get("Market", TransactionType.expense)
        with pytest.raises(NotFoundError):
            categories.update(
                "Market",
                TransactionType.expense,
                CategoryIn(name="Other", type=TransactionType.expense, icon="📋"),
            )
        with pytest.raises(ConflictError):
            categories.update(
                "Groceries",
                TransactionType.expense,
                CategoryIn(name="Transport", type=TransactionType.expense, icon="🚗"),
            )


def test_delete_keeps_historical_transactions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session, USER)
        categories.create(
            CategoryIn(name="Streaming", type=TransactionType.expense, icon="📺")
        )
        TransactionService(session, USER).record(
            TransactionIn(
                amount=Decimal("39.90"),
                type=TransactionType.expense,
                category="Streaming",
                description="Monthly plan",
                date=date(2024, 3, 10),
            )
        )

        categories.delete("Streaming", TransactionType.expense)

        assert categories.list_all() == []
        assert session.scalar(select(func.count(Transaction.id))) == 1
        breakdown = MetricsService(session, USER).category_breakdown(
            date(2024, 3, 1), date(2024, 3, 31)
        )
        assert [(r.category, r.category_icon) for r in breakdown] == [
            ("Streaming", "📺")
        ]

        with pytest.raises(NotFoundError):
            categories.delete("Streaming", TransactionType.expense)
        with pytest.raises(NotFoundError):
            TransactionService(session, USER).record(
                TransactionIn(
                    amount=Decimal("39.90"),
                    type=TransactionType.expense,
                    category="Streaming",
                    description="Monthly plan",
                    date=date(2024, 4, 10),
                )
            )


def test_user_settings_created_lazily_with_default_currency() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = UserSettingsService(session, USER)
        first = service.get()
        second = service.get()

        assert first.currency == CurrencyCode.brl
        assert first.id == second.id
        assert session.scalar(select(func.count(UserSettings.id))) == 1

        service.update(UserSettingsIn(currency=CurrencyCode.eur))
        described = service.describe()
        assert described.currency == CurrencyCode.eur
        assert described.symbol == "€"


def test_user_settings_reject_unsupported_currency() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_payload(UserSettingsIn, {"currency": "JPY"})
    assert excinfo.value.fields == ["currency"]


def test_setup_replaces_categories_and_sets_currency() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        CategoryService(session, USER).create(
            CategoryIn(name="Old", type=TransactionType.expense, icon="🗑️")
        )

        created = SetupService(session, USER).apply(
            SetupIn(
                currency=CurrencyCode.usd,
                income_categories=[SuggestedCategoryIn(name="Salary", icon="💰")],
                expense_categories=[
                    SuggestedCategoryIn(name="Food", icon="🍽️"),
                    SuggestedCategoryIn(name="Salary", icon="💸"),
                ],
            )
        )

        assert len(created) == 3
        roster = session.scalars(
            select(Category).where(Category.user_id == USER).order_by(Category.name)
        ).all()
        assert sorted((c.type.value, c.name) for c in roster) == [
            ("expense", "Food"),
            ("expense", "Salary"),
            ("income", "Salary"),
        ]
        assert UserSettingsService(session, USER).get().currency == CurrencyCode.usd


def test_setup_rejects_duplicates_without_touching_roster() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        CategoryService(session, USER).create(
            CategoryIn(name="Keep", type=TransactionType.expense, icon="📌")
        )

        with pytest.raises(ConflictError):
            SetupService(session, USER).apply(
                SetupIn(
                    currency=CurrencyCode.eur,
                    expense_categories=[
                        SuggestedCategoryIn(name="Food", icon="🍽️"),
                        SuggestedCategoryIn(name="food ", icon="🍔"),
                    ],
                )
            )

        assert [c.name for c in CategoryService(session, USER).list_all()] == ["Keep"]


def test_category_names_are_trimmed_and_blank_names_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_payload(CategoryIn, {"name": "   ", "type": "expense", "icon": "🏋️"})
    assert excinfo.value.fields == ["name"]

    with pytest.raises(ValidationError) as excinfo:
        parse_payload(
            SetupIn,
            {"currency": "BRL", "expense_categories": [{"name": " ", "icon": "🏋️"}]},
        )
    assert excinfo.value.fields == ["expense_categories.0.name"]

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        data = parse_payload(CategoryIn, {"name": "  Gym ", "type": "expense", "icon": "🏋️"})
        CategoryService(session, USER).create(data)

        assert [c.name for c in CategoryService(session, USER).list_all()] == ["Gym"]


def test_setup_without_rosters_uses_starter_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        created = SetupService(session, USER).apply(SetupIn(currency=CurrencyCode.brl))

        income = CategoryService(session, USER).list_all(TransactionType.income)
        expense = CategoryService(session, USER).list_all(TransactionType.expense)
        assert len(created) == len(DEFAULT_INCOME_CATEGORIES) + len(
            DEFAULT_EXPENSE_CATEGORIES
        )
        assert sorted((c.name, c.icon) for c in income) == sorted(
            DEFAULT_INCOME_CATEGORIES
        )
        assert sorted((c.name, c.icon) for c in expense) == sorted(
            DEFAULT_EXPENSE_CATEGORIES
        )

        # an explicit empty roster still clears everything
        SetupService(session, USER).apply(
            SetupIn(currency=CurrencyCode.brl, income_categories=[])
        )
        assert CategoryService(session, USER).list_all() == []


def test_setup_suggestions_list_both_rosters() -> None:
    suggestions = SetupService.suggestions()

    assert [(c.name, c.icon) for c in suggestions.income] == SUGGESTED_INCOME_CATEGORIES
    assert [
        (c.name, c.icon) for c in suggestions.expense
    ] == SUGGESTED_EXPENSE_CATEGORIES
    assert ("Plano de Saúde", "🏥") in SUGGESTED_EXPENSE_CATEGORIES


def test_failed_setup_leaves_no_settings_row(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        CategoryService(session, USER).create(
            CategoryIn(name="Keep", type=TransactionType.expense, icon="📌")
        )

        def broken_add_all(instances):
            raise RuntimeError("disk full")

        monkeypatch.setattr(session, "add_all", broken_add_all)
        with pytest.raises(RuntimeError):
            SetupService(session, USER).apply(
                SetupIn(
                    currency=CurrencyCode.usd,
                    income_categories=[SuggestedCategoryIn(name="Salary", icon="💰")],
                )
            )
        monkeypatch.undo()

        assert session.scalar(select(func.count(UserSettings.id))) == 0
        assert [c.name for c in CategoryService(session, USER).list_all()] == ["Keep"]
