from decimal import Decimal

import pytest

from errors import ValidationError
from pricing import compute_totals, is_sufficient_payment, money


def test_tax_applied_to_subtotal():
    totals = compute_totals(100, 0, 10)
    assert totals.taxable_amount == Decimal("100")
    assert totals.tax == Decimal("10")
    assert totals.total == Decimal("110")


def test_discount_without_tax():
    totals = compute_totals(100, 20, 0)
    assert totals == (Decimal("80"), Decimal("0"), Decimal("80"))


def test_discount_larger_than_subtotal_is_clamped():
    totals = compute_totals(50, 60, 10)
    assert totals.taxable_amount == 0
    assert totals.tax == 0
    assert totals.total == 0


def test_no_intermediate_rounding():
    # 3 x 0.333 taxed at 7.5% keeps every digit
    totals = compute_totals(Decimal("0.999"), 0, Decimal("7.5"))
    assert totals.tax == Decimal("0.0749250")
    assert totals.total == Decimal("1.0739250")
    assert money(totals.total) == Decimal("1.07")


def test_floats_are_read_as_written():
    totals = compute_totals(0.1, 0, 0)
    assert totals.total == Decimal("0.1")


@pytest.mark.parametrize("args", [(-1, 0, 0), (10, -1, 0), (10, 0, -5)])
def test_negative_inputs_rejected(args):
    with pytest.raises(ValidationError):
        compute_totals(*args)


def test_payment_tolerance_is_one_cent():
    assert is_sufficient_payment("109.99", "110.00")
    assert not is_sufficient_payment("109.98", "110.00")


def test_money_rounds_half_up():
    assert money("2.345") == Decimal("2.35")
    assert money(3) == Decimal("3.00")


@pytest.mark.parametrize("value", ["abc", "", float("nan"), float("inf"), Decimal("NaN"), Decimal("-Infinity")])
def test_malformed_amounts_are_validation_errors(value):
    with pytest.raises(ValidationError, match="Invalid amount"):
        compute_totals(value, 0, 0)
