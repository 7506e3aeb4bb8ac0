import unittest
from datetime import date
from decimal import Decimal

from backend.budget_adjustment import (
    Donor,
    InvalidTransfer,
    apply_transfer,
    eligible_donors,
    plan_transfer,
)
from backend.budget_engine import (
    BudgetStatus,
    Category,
    Expense,
    Period,
    budget_report,
    spending_by_category,
)

JANUARY = Period(start=date(2024, 1, 1), end=date(2024, 1, 31))


class BudgetAdjustmentScenarioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.categories = [
            Category(id="rent", name="Rent", limit=Decimal("2000"), is_essential=True),
            Category(id="food", name="Food", limit=Decimal("500")),
        ]
        self.expenses = [
            Expense(
                id="e1",
                category_id="rent",
                amount=Decimal("2200"),
                date=date(2024, 1, 5),
            )
        ]

    def test_rent_overrun_is_covered_by_food(self) -> None:
        spending = spending_by_category(self.categories, self.expenses, JANUARY)
        rent, food = budget_report(self.categories, spending)

        self.assertEqual(rent.spent, Decimal("2200"))
        self.assertEqual(rent.remaining, Decimal("-200"))
        self.assertEqual(rent.status, BudgetStatus.OVER_BUDGET)
        self.assertEqual(food.spent, Decimal("0"))
        self.assertEqual(food.remaining, Decimal("500"))

        donors = eligible_donors(self.categories, spending, "rent")
        self.assertEqual([donor.category.id for donor in donors], ["food"])
        self.assertEqual(donors[0].remaining, Decimal("500"))

        plan = plan_transfer(donors[0], rent.remaining)
        self.assertEqual(plan.transfer_amount, Decimal("200"))
        self.assertTrue(plan.fully_covered)

        updated = apply_transfer(self.categories, "rent", "food", plan.transfer_amount)
        limits = {category.id: category.limit for category in updated}
        self.assertEqual(limits, {"rent": Decimal("2200"), "food": Decimal("300")})
        self.assertEqual(sum(limits.values()), Decimal("2500"))

    def test_original_categories_are_not_mutated(self) -> None:
        apply_transfer(self.categories, "rent", "food", Decimal("200"))

        self.assertEqual(self.categories[0].limit, Decimal("2000"))
        self.assertEqual(self.categories[1].limit, Decimal("500"))


class EligibleDonorTests(unittest.TestCase):
    def test_excludes_target_essential_and_exhausted_categories(self) -> None:
        categories = [
            Category(id="target", name="Dining", limit=Decimal("100")),
            Category(id="util", name="Utilities", limit=Decimal("300"), is_essential=True),
            Category(id="spent", name="Shopping", limit=Decimal("200")),
            Category(id="over", name="Transport", limit=Decimal("50")),
            Category(id="fun", name="Entertainment", limit=Decimal("150")),
            Category(id="other", name="Other", limit=Decimal("80")),
        ]
        spending = {
            "target": Decimal("160"),
            "util": Decimal("0"),
            "spent": Decimal("200"),
            "over": Decimal("70"),
            "fun": Decimal("30"),
        }

        donors = eligible_donors(categories, spending, "target")

        self.assertEqual([donor.category.id for donor in donors], ["fun", "other"])
        self.assertEqual(donors[0].spent, Decimal("30"))
        self.assertEqual(donors[0].remaining, Decimal("120"))
        self.assertEqual(donors[1].spent, Decimal("0"))
        self.assertEqual(donors[1].remaining, Decimal("80"))
        for donor in donors:
            self.assertFalse(donor.category.is_essential)
            self.assertGreater(donor.remaining, Decimal("0"))

    def test_no_eligible_donor_returns_empty_list(self) -> None:
        categories = [
            Category(id="rent", name="Rent", limit=Decimal("1000"), is_essential=True),
            Category(id="food", name="Food", limit=Decimal("100")),
        ]
        spending = {"rent": Decimal("1200"), "food": Decimal("100")}

        self.assertEqual(eligible_donors(categories, spending, "rent"), [])


class PlanTransferTests(unittest.TestCase):
    def test_partial_cover_is_capped_at_donor_remaining(self) -> None:
        donor = Donor(
            category=Category(id="fun", name="Fun", limit=Decimal("100")),
            spent=Decimal("60"),
            remaining=Decimal("40"),
        )

        plan = plan_transfer(donor, Decimal("75"))

        self.assertEqual(plan.transfer_amount, Decimal("40"))
        self.assertFalse(plan.fully_covered)

    def test_negative_deficit_is_treated_as_positive_need(self) -> None:
        donor = Donor(
            category=Category(id="fun", name="Fun", limit=Decimal("100")),
            spent=Decimal("0"),
            remaining=Decimal("100"),
        )

        plan = plan_transfer(donor, Decimal("-30"))

        self.assertEqual(plan.transfer_amount, Decimal("30"))
        self.assertTrue(plan.fully_covered)


class ApplyTransferTests(unittest.TestCase):
    def setUp(self) -> None:
        self.categories = [
            Category(id="a", name="A", limit=Decimal("100")),
            Category(id="b", name="B", limit=Decimal("200")),
            Category(id="c", name="C", limit=Decimal("300"), is_essential=True),
        ]

    def test_only_target_and_donor_change(self) -> None:
        updated = apply_transfer(self.categories, "a", "b", Decimal("25.50"))

        self.assertEqual(updated[0].limit, Decimal("125.50"))
        self.assertEqual(updated[1].limit, Decimal("174.50"))
        self.assertEqual(updated[2], self.categories[2])
        self.assertEqual(
            sum(category.limit for category in updated),
            sum(category.limit for category in self.categories),
        )

    def test_rejects_self_transfer(self) -> None:
        with self.assertRaises(InvalidTransfer):
            apply_transfer(self.categories, "a", "a", Decimal("10"))

    def test_rejects_non_positive_amount(self) -> None:
        with self.assertRaises(InvalidTransfer):
            apply_transfer(self.categories, "a", "b", Decimal("0"))
        with self.assertRaises(InvalidTransfer):
            apply_transfer(self.categories, "a", "b", Decimal("-5"))

    def test_rejects_essential_donor(self) -> None:
        with self.assertRaises(InvalidTransfer):
            apply_transfer(self.categories, "a", "c", Decimal("10"))

    def test_rejects_unknown_categories(self) -> None:
        with self.assertRaises(InvalidTransfer):
            apply_transfer(self.categories, "missing", "b", Decimal("10"))
        with self.assertRaises(InvalidTransfer):
            apply_transfer(self.categories, "a", "missing", Decimal("10"))

    def test_rejects_amount_above_donor_limit(self) -> None:
        with self.assertRaises(InvalidTransfer):
            apply_transfer(self.categories, "a", "b", Decimal("200.01"))


if __name__ == "__main__":
    unittest.main()
