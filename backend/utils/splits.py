"""Derive (total, weights) from the different ways a client can describe a split.

The allocation engine only understands percentages. These helpers sit at the
boundary: the member directory supplies even splits, exact amounts come
straight from the form, and receipt line items come from the scanner.
"""

from fractions import Fraction
from typing import Optional

import schemas
from errors import ValidationError
from utils.allocation import FULL_SHARE


SPLIT_TYPES = ("EVEN", "WEIGHTS", "EXACT", "ITEMIZED")


def even_weights(member_ids: list[int]) -> list[tuple[int, Fraction]]:
    """Give every member the same weight."""
    if not member_ids:
        return []
    share = FULL_SHARE / len(member_ids)
    return [(member_id, share) for member_id in member_ids]


def weights_from_amounts(amounts: list[tuple[int, int]]) -> tuple[int, list[tuple[int, Fraction]]]:
    """Turn exact per-member amounts into a total and matching percentage weights."""
    total = sum(amount for _, amount in amounts)
    if total == 0:
        return 0, even_weights([member_id for member_id, _ in amounts])
    return total, [
        (member_id, Fraction(amount * 100, total))
        for member_id, amount in amounts
    ]


def weights_from_items(items: list[schemas.ReceiptItem]) -> tuple[int, list[tuple[int, Fraction]]]:
    """
    Calculate each person's weight based on assigned receipt items.

    Algorithm:
    1. Sum each person's assigned items (shared items split equally)
    2. Weight = person's subtotal / subtotal of all non-tax/tip items
    3. Tax/tip follows the same proportions, so the total is simply every price

    Returns (total_cents, weights) with weights as percentages.
    """
    person_subtotals: dict[int, Fraction] = {}

    for item in items:
        if item.is_tax_tip:
            continue
        if not item.assignees:
            raise ValidationError(f"Item '{item.description}' must have at least one assignee")

        per_person = Fraction(item.price, len(item.assignees))
        for member_id in item.assignees:
            person_subtotals[member_id] = person_subtotals.get(member_id, Fraction(0)) + per_person

    total = sum(item.price for item in items)
    regular_total = sum(person_subtotals.values())

    if regular_total == 0:
        return total, even_weights(list(person_subtotals))

    return total, [
        (member_id, subtotal * 100 / regular_total)
        for member_id, subtotal in person_subtotals.items()
    ]


def weights_for_request(
    split_type: str,
    group_member_ids: list[int],
    total_amount: Optional[int] = None,
    weights: Optional[list[schemas.ShareWeight]] = None,
    amounts: Optional[list[schemas.ExactAmount]] = None,
    items: Optional[list[schemas.ReceiptItem]] = None,
    member_ids: Optional[list[int]] = None,
) -> tuple[int, list[tuple]]:
    """Resolve an expense request body into the (total, weights) pair the proposal needs."""
    split_type = (split_type or "EVEN").upper()

    if split_type == "EVEN":
        if total_amount is None:
            raise ValidationError("total_amount is required for EVEN split type")
        return total_amount, even_weights(member_ids or group_member_ids)

    if split_type == "WEIGHTS":
        if total_amount is None:
            raise ValidationError("total_amount is required for WEIGHTS split type")
        if not weights:
            raise ValidationError("Weights required for WEIGHTS split type")
        return total_amount, [(w.member_id, w.weight) for w in weights]

    if split_type == "EXACT":
        if not amounts:
            raise ValidationError("Amounts required for EXACT split type")
        for entry in amounts:
            if entry.amount < 0:
                raise ValidationError(f"Amount for member {entry.member_id} cannot be negative")
        total, derived = weights_from_amounts([(a.member_id, a.amount) for a in amounts])
        if total_amount is not None and total_amount != total:
            raise ValidationError(
                f"Split amounts do not sum to total expense amount. Total: {total_amount}, Sum: {total}"
            )
        return total, derived

    if split_type == "ITEMIZED":
        if not items:
            raise ValidationError("Items required for ITEMIZED split type")
        for item in items:
            if item.price < 0:
                raise ValidationError(f"Item '{item.description}' cannot have a negative price")
        return weights_from_items(items)

    raise ValidationError(f"Unknown split type '{split_type}'. Expected one of {', '.join(SPLIT_TYPES)}")
