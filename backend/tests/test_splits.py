from decimal import Decimal
from fractions import Fraction

import pytest

import schemas
from errors import ValidationError
from utils.splits import even_weights, weights_for_request, weights_from_amounts, weights_from_items


def test_even_weights():
    assert even_weights([4, 5, 6]) == [(4, Fraction(100, 3)), (5, Fraction(100, 3)), (6, Fraction(100, 3))]
    assert even_weights([]) == []


def test_weights_from_amounts():
    total, weights = weights_from_amounts([(1, 2500), (2, 7500)])
    assert total == 10000
    assert weights == [(1, Fraction(25)), (2, Fraction(75))]


def test_weights_from_zero_amounts_are_even():
    total, weights = weights_from_amounts([(1, 0), (2, 0)])
    assert total == 0
    assert weights == [(1, Fraction(50)), (2, Fraction(50))]


def test_weights_from_items_spreads_tax_proportionally():
    items = [
        schemas.ReceiptItem(description="Burger", price=1500, assignees=[1]),
        schemas.ReceiptItem(description="Fries", price=500, assignees=[1, 2]),
        schemas.ReceiptItem(description="Shake", price=750, assignees=[2]),
        schemas.ReceiptItem(description="Tip", price=550, is_tax_tip=True),
    ]
    total, weights = weights_from_items(items)
    assert total == 3300
    # Person 1: 1500 + 250 = 1750 of 2750; person 2: 250 + 750 = 1000 of 2750
    assert dict(weights) == {1: Fraction(1750 * 100, 2750), 2: Fraction(1000 * 100, 2750)}


def test_item_without_assignees_is_rejected():
    items = [schemas.ReceiptItem(description="Mystery", price=100)]
    with pytest.raises(ValidationError) as exc:
        weights_from_items(items)
    assert "Mystery" in exc.value.message


def test_even_request_defaults_to_group_members():
    total, weights = weights_for_request("EVEN", [1, 2], total_amount=900)
    assert total == 900
    assert [m for m, _ in weights] == [1, 2]

    _, subset = weights_for_request("even", [1, 2, 3], total_amount=900, member_ids=[3])
    assert subset == [(3, Fraction(100))]


def test_weights_request():
    weights = [schemas.ShareWeight(member_id=1, weight=Decimal("60")), schemas.ShareWeight(member_id=2, weight=Decimal("40"))]
    total, resolved = weights_for_request("WEIGHTS", [1, 2], total_amount=500, weights=weights)
    assert total == 500
    assert resolved == [(1, Decimal("60")), (2, Decimal("40"))]


@pytest.mark.parametrize("kwargs,message", [
    ({"split_type": "EVEN"}, "total_amount is required"),
    ({"split_type": "WEIGHTS", "total_amount": 100}, "Weights required"),
    ({"split_type": "EXACT"}, "Amounts required"),
    ({"split_type": "ITEMIZED"}, "Items required"),
    ({"split_type": "SHARES", "total_amount": 100}, "Unknown split type"),
])
def test_incomplete_requests(kwargs, message):
    with pytest.raises(ValidationError) as exc:
        weights_for_request(group_member_ids=[1, 2], **kwargs)
    assert message in exc.value.message


def test_exact_request_rejects_negative_amounts():
    amounts = [schemas.ExactAmount(member_id=1, amount=-5), schemas.ExactAmount(member_id=2, amount=105)]
    with pytest.raises(ValidationError):
        weights_for_request("EXACT", [1, 2], amounts=amounts)
