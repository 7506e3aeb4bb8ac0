from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, List, Mapping

from backend.budget_engine import ZERO, Category


class InvalidTransfer(ValueError):
    """Raised when a budget transfer is rejected before anything changes."""


@dataclass(frozen=True)
class Donor:
    category: Category
    spent: Decimal
    remaining: Decimal


@dataclass(frozen=True)
class TransferPlan:
    transfer_amount: Decimal
    fully_covered: bool


def eligible_donors(
    categories: Iterable[Category],
    spending: Mapping[str, Decimal],
    target_category_id: str,
) -> List[Donor]:
    """Non-essential categories, other than the target, with budget left.

    An empty list means nothing can fund the target; callers handle that case.
    """
    donors: List[Donor] = []
    for category in categories:
        if category.id == target_category_id or category.is_essential:
            continue
        spent = _coerce_amount(spending.get(category.id, ZERO))
        remaining = _coerce_amount(category.limit) - spent
        if remaining <= ZERO:
            continue
        donors.append(Donor(category=category, spent=spent, remaining=remaining))
    return donors


def plan_transfer(donor: Donor, amount_needed: Decimal) -> TransferPlan:
    needed = abs(_coerce_amount(amount_needed))
    available = max(_coerce_amount(donor.remaining), ZERO)
    return TransferPlan(
        transfer_amount=min(needed, available),
        fully_covered=available >= needed,
    )


def apply_transfer(
    categories: Iterable[Category],
    target_id: str,
    donor_id: str,
    transfer_amount: Decimal,
) -> List[Category]:
    category_list = list(categories)
    amount = _coerce_amount(transfer_amount)

    if donor_id == target_id:
        raise InvalidTransfer("Cannot transfer budget to the same category.")
    if amount <= ZERO:
        raise InvalidTransfer("Transfer amount must be greater than zero.")

    by_id = {category.id: category for category in category_list}
    target = by_id.get(target_id)
    donor = by_id.get(donor_id)
    if target is None:
        raise InvalidTransfer(f"Unknown target category: {target_id}")
    if donor is None:
        raise InvalidTransfer(f"Unknown donor category: {donor_id}")
    if donor.is_essential:
        raise InvalidTransfer(f"Essential category '{donor.name}' cannot donate budget.")
    if amount > _coerce_amount(donor.limit):
        raise InvalidTransfer(
            f"Transfer amount exceeds the limit of '{donor.name}'."
        )

    updated: List[Category] = []
    for category in category_list:
        if category.id == target_id:
            category = replace(category, limit=_coerce_amount(category.limit) + amount)
        elif category.id == donor_id:
            category = replace(category, limit=_coerce_amount(category.limit) - amount)
        updated.append(category)
    return updated


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
