from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Iterator, Mapping, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
WARNING_RATIO = Decimal("0.8")
UNKNOWN_CATEGORY_NAME = "Unknown"


class BudgetStatus:
    OK = "OK"
    WARNING = "WARNING"
    OVER_BUDGET = "OVER BUDGET"


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    limit: Decimal
    color: str = "#6b7280"
    is_essential: bool = False


@dataclass(frozen=True)
class Expense:
    id: str
    category_id: str
    amount: Decimal
    date: date
    description: str = ""
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


@dataclass(frozen=True)
class CategorySpending(Mapping[str, Decimal]):
    """Spent amount per known category id for one period.

    Expenses pointing at a category that is not in the list are kept in
    ``unmatched`` instead of being dropped.
    """

    totals: Mapping[str, Decimal] = field(default_factory=dict)
    unmatched: Decimal = ZERO

    def __getitem__(self, category_id: str) -> Decimal:
        return self.totals[category_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self.totals)

    def __len__(self) -> int:
        return len(self.totals)

    @property
    def total(self) -> Decimal:
        return sum(self.totals.values(), ZERO) + self.unmatched


@dataclass(frozen=True)
class BudgetSummary:
    category_id: str
    category_name: str
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: Decimal
    status: str

    @property
    def is_over_budget(self) -> bool:
        return self.status == BudgetStatus.OVER_BUDGET


@dataclass(frozen=True)
class BudgetTotals:
    total_budget: Decimal
    total_spent: Decimal
    remaining: Decimal
    over_budget_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class DaySpending:
    date: date
    expenses: tuple[Expense, ...]
    total: Decimal


def spending_by_category(
    categories: Iterable[Category],
    expenses: Iterable[Expense],
    period: Period,
) -> CategorySpending:
    totals: dict[str, Decimal] = {category.id: ZERO for category in categories}
    unmatched = ZERO
    for expense in _in_period(expenses, period):
        amount = _coerce_amount(expense.amount)
        if expense.category_id in totals:
            totals[expense.category_id] += amount
        else:
            unmatched += amount
    return CategorySpending(totals=totals, unmatched=unmatched)


def monthly_total(expenses: Iterable[Expense], period: Period) -> Decimal:
    total = ZERO
    for expense in _in_period(expenses, period):
        total += _coerce_amount(expense.amount)
    return total


def daily_totals(expenses: Iterable[Expense], period: Period) -> dict[date, Decimal]:
    totals: dict[date, Decimal] = {}
    for expense in _in_period(expenses, period):
        totals[expense.date] = totals.get(expense.date, ZERO) + _coerce_amount(
            expense.amount
        )
    return dict(sorted(totals.items()))


def expenses_on(expenses: Iterable[Expense], day: date) -> DaySpending:
    matching = tuple(expense for expense in expenses if expense.date == day)
    total = sum((_coerce_amount(expense.amount) for expense in matching), ZERO)
    return DaySpending(date=day, expenses=matching, total=total)


def classify(category: Category, spent: Decimal) -> BudgetSummary:
    limit = _coerce_amount(category.limit)
    spent = _coerce_amount(spent)
    if limit > ZERO:
        percentage = spent / limit * HUNDRED
    else:
        percentage = ZERO

    if spent > limit:
        status = BudgetStatus.OVER_BUDGET
    elif spent > limit * WARNING_RATIO:
        status = BudgetStatus.WARNING
    else:
        status = BudgetStatus.OK

    return BudgetSummary(
        category_id=category.id,
        category_name=category.name,
        limit=limit,
        spent=spent,
        remaining=limit - spent,
        percentage=percentage,
        status=status,
    )


def budget_report(
    categories: Iterable[Category],
    spending: Mapping[str, Decimal],
) -> list[BudgetSummary]:
    return [
        classify(category, spending.get(category.id, ZERO))
        for category in categories
    ]


def over_budget_categories(
    categories: Iterable[Category],
    spending: Mapping[str, Decimal],
) -> list[Category]:
    return [
        category
        for category in categories
        if _coerce_amount(spending.get(category.id, ZERO))
        > _coerce_amount(category.limit)
    ]


def is_over_budget(
    category_id: str,
    categories: Iterable[Category],
    spending: Mapping[str, Decimal],
) -> bool:
    for category in categories:
        if category.id == category_id:
            return _coerce_amount(spending.get(category_id, ZERO)) > _coerce_amount(
                category.limit
            )
    return False


def budget_totals(
    categories: Iterable[Category],
    spending: CategorySpending,
) -> BudgetTotals:
    report = budget_report(categories, spending)
    total_budget = sum((summary.limit for summary in report), ZERO)
    total_spent = sum((summary.spent for summary in report), ZERO)
    return BudgetTotals(
        total_budget=total_budget,
        total_spent=total_spent,
        remaining=total_budget - total_spent,
        over_budget_names=tuple(
            summary.category_name for summary in report if summary.is_over_budget
        ),
    )


def round_percentage(value: Decimal) -> Decimal:
    return _coerce_amount(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def _in_period(expenses: Iterable[Expense], period: Period) -> Iterator[Expense]:
    return (expense for expense in expenses if period.contains(expense.date))


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
