import unittest
from datetime import date
from decimal import Decimal

from backend.budget_engine import (
    BudgetStatus,
    Category,
    Expense,
    Period,
    budget_report,
    budget_totals,
    classify,
    daily_totals,
    expenses_on,
    is_over_budget,
    monthly_total,
    over_budget_categories,
    round_percentage,
    spending_by_category,
)

JANUARY = Period(start=date(2024, 1, 1), end=date(2024, 1, 31))


class SpendingAggregationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.categories = [
            Category(id="rent", name="Rent", limit=Decimal("2000"), is_essential=True),
            Category(id="food", name="Food", limit=Decimal("500")),
            Category(id="fun", name="Entertainment", limit=Decimal("100")),
        ]
        self.expenses = [
            Expense(
                id="e1",
                category_id="food",
                amount=Decimal("40"),
                date=date(2024, 1, 1),
            ),
            Expense(
                id="e2",
                category_id="food",
                amount=Decimal("25.50"),
                date=date(2024, 1, 31),
            ),
            Expense(
                id="e3",
                category_id="food",
                amount=Decimal("99"),
                date=date(2023, 12, 31),
            ),
            Expense(
                id="e4",
                category_id="deleted",
                amount=Decimal("12"),
                date=date(2024, 1, 15),
            ),
            Expense(
                id="e5",
                category_id="rent",
                amount=Decimal("2000"),
                date=date(2024, 1, 3),
            ),
        ]

    def test_categories_without_expenses_are_present_with_zero(self) -> None:
        spending = spending_by_category(self.categories, [], JANUARY)

        self.assertEqual(
            dict(spending),
            {"rent": Decimal("0"), "food": Decimal("0"), "fun": Decimal("0")},
        )
        self.assertEqual(spending.unmatched, Decimal("0"))

    def test_only_expenses_inside_period_are_summed(self) -> None:
        spending = spending_by_category(self.categories, self.expenses, JANUARY)

        self.assertEqual(spending["food"], Decimal("65.50"))
        self.assertEqual(spending["rent"], Decimal("2000"))
        self.assertEqual(spending["fun"], Decimal("0"))

    def test_unknown_category_goes_to_unmatched_bucket(self) -> None:
        spending = spending_by_category(self.categories, self.expenses, JANUARY)

        self.assertNotIn("deleted", spending)
        self.assertEqual(spending.unmatched, Decimal("12"))

    def test_category_totals_plus_unmatched_equal_period_total(self) -> None:
        spending = spending_by_category(self.categories, self.expenses, JANUARY)
        total = monthly_total(self.expenses, JANUARY)

        self.assertEqual(total, Decimal("2077.50"))
        self.assertEqual(sum(spending.values()) + spending.unmatched, total)
        self.assertEqual(spending.total, total)

    def test_aggregation_is_repeatable_and_order_independent(self) -> None:
        first = spending_by_category(self.categories, self.expenses, JANUARY)
        second = spending_by_category(self.categories, self.expenses, JANUARY)
        reversed_result = spending_by_category(
            self.categories, list(reversed(self.expenses)), JANUARY
        )

        self.assertEqual(first, second)
        self.assertEqual(dict(first), dict(reversed_result))
        self.assertEqual(first.unmatched, reversed_result.unmatched)

    def test_daily_totals_group_by_date(self) -> None:
        expenses = self.expenses + [
            Expense(
                id="e6",
                category_id="fun",
                amount=Decimal("10"),
                date=date(2024, 1, 1),
            )
        ]

        totals = daily_totals(expenses, JANUARY)

        self.assertEqual(
            totals,
            {
                date(2024, 1, 1): Decimal("50"),
                date(2024, 1, 3): Decimal("2000"),
                date(2024, 1, 15): Decimal("12"),
                date(2024, 1, 31): Decimal("25.50"),
            },
        )

    def test_expenses_on_returns_day_detail(self) -> None:
        detail = expenses_on(self.expenses, date(2024, 1, 31))

        self.assertEqual([expense.id for expense in detail.expenses], ["e2"])
        self.assertEqual(detail.total, Decimal("25.50"))


class BudgetClassificationTests(unittest.TestCase):
    def test_spending_equal_to_limit_is_ok(self) -> None:
        category = Category(id="c1", name="Food", limit=Decimal("1000"))

        summary = classify(category, Decimal("1000"))

        self.assertEqual(summary.status, BudgetStatus.OK)
        self.assertEqual(summary.remaining, Decimal("0"))
        self.assertEqual(summary.percentage, Decimal("100"))

    def test_spending_above_eighty_percent_is_warning(self) -> None:
        category = Category(id="c1", name="Food", limit=Decimal("1000"))

        summary = classify(category, Decimal("801"))

        self.assertEqual(summary.status, BudgetStatus.WARNING)
        self.assertEqual(round_percentage(summary.percentage), Decimal("80.1"))

    def test_spending_at_eighty_percent_is_ok(self) -> None:
        category = Category(id="c1", name="Food", limit=Decimal("1000"))

        summary = classify(category, Decimal("800"))

        self.assertEqual(summary.status, BudgetStatus.OK)

    def test_spending_above_limit_is_over_budget(self) -> None:
        category = Category(id="rent", name="Rent", limit=Decimal("2000"))

        summary = classify(category, Decimal("2200"))

        self.assertEqual(summary.status, BudgetStatus.OVER_BUDGET)
        self.assertEqual(summary.remaining, Decimal("-200"))
        self.assertTrue(summary.is_over_budget)

    def test_zero_limit_has_zero_percentage(self) -> None:
        category = Category(id="c0", name="Gifts", limit=Decimal("0"))

        unused = classify(category, Decimal("0"))
        spent = classify(category, Decimal("15"))

        self.assertEqual(unused.percentage, Decimal("0"))
        self.assertEqual(unused.status, BudgetStatus.OK)
        self.assertEqual(spent.percentage, Decimal("0"))
        self.assertEqual(spent.status, BudgetStatus.OVER_BUDGET)

    def test_unspent_category_is_ok(self) -> None:
        category = Category(id="c1", name="Food", limit=Decimal("500"))

        summary = classify(category, Decimal("0"))

        self.assertEqual(summary.spent, Decimal("0"))
        self.assertEqual(summary.status, BudgetStatus.OK)

    def test_report_and_over_budget_filter_keep_category_order(self) -> None:
        categories = [
            Category(id="b", name="B", limit=Decimal("10")),
            Category(id="a", name="A", limit=Decimal("10")),
            Category(id="c", name="C", limit=Decimal("10")),
        ]
        spending = {"a": Decimal("11"), "b": Decimal("12"), "c": Decimal("1")}

        report = budget_report(categories, spending)
        over = over_budget_categories(categories, spending)

        self.assertEqual([item.category_id for item in report], ["b", "a", "c"])
        self.assertEqual([item.id for item in over], ["b", "a"])
        self.assertTrue(is_over_budget("a", categories, spending))
        self.assertFalse(is_over_budget("c", categories, spending))
        self.assertFalse(is_over_budget("missing", categories, spending))

    def test_budget_totals_sum_limits_and_spending(self) -> None:
        categories = [
            Category(id="rent", name="Rent", limit=Decimal("2000"), is_essential=True),
            Category(id="food", name="Food", limit=Decimal("500")),
        ]
        expenses = [
            Expense(
                id="e1",
                category_id="rent",
                amount=Decimal("2200"),
                date=date(2024, 1, 5),
            )
        ]
        spending = spending_by_category(categories, expenses, JANUARY)

        totals = budget_totals(categories, spending)

        self.assertEqual(totals.total_budget, Decimal("2500"))
        self.assertEqual(totals.total_spent, Decimal("2200"))
        self.assertEqual(totals.remaining, Decimal("300"))
        self.assertEqual(totals.over_budget_names, ("Rent",))


if __name__ == "__main__":
    unittest.main()
