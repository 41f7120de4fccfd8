from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError
from models import CurrencyCode, TransactionType
from periods import parse_day

Money = Annotated[
    Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")
]

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_payload(model: type[ModelT], payload: Any) -> ModelT:
    """Validate ``payload`` against ``model``, reporting the offending fields."""
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        fields = [
            ".".join(str(part) for part in err["loc"]) or "__root__"
            for err in exc.errors()
        ]
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(fields, messages) from exc


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=2, max_length=200)
    date: date
    category: str = Field(..., min_length=1, max_length=100)
    type: TransactionType

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_day(cls, value: Any) -> Any:
        # timestamps such as "2024-03-05T03:00:00.000Z" count for their UTC day
        if isinstance(value, (str, datetime)):
            try:
                return parse_day(value)
            except ValueError:
                return value
        return value


class CategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon: str = Field(..., min_length=1, max_length=16)


class SuggestedCategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    icon: str = Field(..., min_length=1, max_length=16)


class SetupIn(BaseModel):
    """Wizard payload; omitting both rosters selects the starter categories."""

    currency: CurrencyCode
    income_categories: Optional[list[SuggestedCategoryIn]] = None
    expense_categories: Optional[list[SuggestedCategoryIn]] = None


class SetupSuggestions(BaseModel):
    income: list[SuggestedCategoryIn]
    expense: list[SuggestedCategoryIn]


class UserSettingsIn(BaseModel):
    currency: CurrencyCode


class HistoryQuery(BaseModel):
    timeframe: Literal["month", "year"]
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(default=0, ge=0, le=11)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Money
    type: TransactionType
    category: str
    category_icon: str
    description: str
    date: date
    created_at: datetime
    updated_at: datetime


class TransactionHistoryItem(TransactionOut):
    formatted_amount: str


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    type: TransactionType
    icon: str


class UserSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    currency: CurrencyCode
    symbol: str


class Balance(BaseModel):
    income: Money
    expense: Money


class CategoryTotal(BaseModel):
    type: TransactionType
    category: str
    category_icon: str
    total_amount: Money


class HistoryPoint(BaseModel):
    day: Optional[int] = None
    month: int
    year: int
    income: Money
    expense: Money


class StatementDay(BaseModel):
    date: date
    transactions: list[TransactionOut]
    day_total: Money
    accumulated_balance: Money


class MonthlyStatement(BaseModel):
    month_total: Money
    days: list[StatementDay]
