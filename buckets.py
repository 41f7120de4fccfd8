"""Gap-filling for calendar-bucketed history views.

Rollup tables only hold rows for days/months that saw activity. The history
charts need one entry per bucket, so absent buckets are filled with zeros.
"""

from calendar import monthrange
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, TypeVar

Row = TypeVar("Row")


@dataclass(frozen=True)
class Bucket:
    key: int
    income_cents: int
    expense_cents: int


def days_in_month(month: int, year: int) -> int:
    """Days in ``month`` (zero-based, 0 = January) of ``year``."""
    if not 0 <= month <= 11:
        raise ValueError(f"Month index out of range: {month}")
    return monthrange(year, month + 1)[1]


def day_keys(month: int, year: int) -> range:
    return range(1, days_in_month(month, year) + 1)


def month_keys() -> range:
    return range(0, 12)


def fill_buckets(
    rows: Iterable[Row],
    keys: Sequence[int],
    key: Callable[[Row], int],
) -> list[Bucket]:
    totals: dict[int, tuple[int, int]] = {}
    for row in rows:
        k = key(row)
        income, expense = totals.get(k, (0, 0))
        totals[k] = (
            income + int(getattr(row, "income_cents") or 0),
            expense + int(getattr(row, "expense_cents") or 0),
        )

    filled: list[Bucket] = []
    for k in sorted(keys):
        income, expense = totals.get(k, (0, 0))
        filled.append(Bucket(key=k, income_cents=income, expense_cents=expense))
    return filled
