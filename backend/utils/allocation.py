"""Allocation engine: turn a total in cents plus per-member weights into integer shares.

Weights arrive as percentages in [0, 100] (ints, floats, strings or Decimals from
the request layer). They are converted to exact fractions on entry so the
arithmetic below never touches floating point, and the resulting shares always
sum to the total exactly.
"""

from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Sequence, Tuple, Union

from errors import ValidationError


WeightInput = Union[int, float, str, Decimal, Fraction]

FULL_SHARE = Fraction(100)


def normalize_weight(value: WeightInput) -> Fraction:
    """
    Convert a weight from the input boundary into an exact Fraction.

    Floats are read through their shortest repr, so 33.33 becomes 3333/100
    rather than the nearest binary double.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid weight: {value!r}")
    if isinstance(value, (Fraction, int)):
        return Fraction(value)
    try:
        if isinstance(value, float):
            value = repr(value)
        return Fraction(Decimal(value))
    except (InvalidOperation, ValueError, TypeError, OverflowError):
        raise ValidationError(f"Invalid weight: {value!r}")


def format_weight(weight: Fraction) -> str:
    """Render a weight for display, two decimal places."""
    return f"{float(weight):.2f}"


def allocate_shares(
    total_cents: int,
    weights: Sequence[Tuple[int, WeightInput]]
) -> list[Tuple[int, int]]:
    """
    Split total_cents across members in proportion to their weights.

    Algorithm:
    1. If exactly one of several members has weight 100, that member takes the
       whole total and everyone else gets 0.
    2. Otherwise each member's raw share is weight / sum(weights) * total.
       The floor of each raw share is handed out first.
    3. The cents left over go out one at a time to the members with the
       largest fractional remainders (ties go to whoever came first).

    Zero total or all-zero weights give all-zero shares. The caller is
    responsible for rejecting negative totals and negative weights.

    Returns (member_id, cents) pairs in input order.
    """
    if not weights:
        return []

    member_ids = [member_id for member_id, _ in weights]
    ratios = [normalize_weight(weight) for _, weight in weights]

    if len(ratios) > 1:
        full_share = [idx for idx, ratio in enumerate(ratios) if ratio == FULL_SHARE]
        if len(full_share) == 1:
            return [
                (member_id, total_cents if idx == full_share[0] else 0)
                for idx, member_id in enumerate(member_ids)
            ]

    weight_sum = sum(ratios)
    if total_cents == 0 or weight_sum == 0:
        return [(member_id, 0) for member_id in member_ids]

    base_shares = []
    remainders = []
    for ratio in ratios:
        raw = ratio * total_cents / weight_sum
        floor = raw.numerator // raw.denominator
        base_shares.append(floor)
        remainders.append(raw - floor)

    leftover = total_cents - sum(base_shares)
    by_remainder = sorted(range(len(ratios)), key=lambda idx: (-remainders[idx], idx))
    for idx in by_remainder[:leftover]:
        base_shares[idx] += 1

    return list(zip(member_ids, base_shares))
