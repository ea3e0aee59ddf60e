from decimal import Decimal

import pytest

from jewel_core.app.models import MakingChargeType, MetalType
from jewel_core.app.services.errors import RateNotFoundError, ValidationError
from jewel_core.app.services.pricing import RawItem, exchange_rate, price_item


def _ring(**overrides):
    fields = dict(
        product_name="Ring",
        metal_type=MetalType.GOLD,
        purity="22K",
        gross_weight=Decimal("10"),
        making_charge_type=MakingChargeType.PERCENT,
        making_charge_value=Decimal("10"),
    )
    fields.update(overrides)
    return RawItem(**fields)


def test_percent_making_charge():
    line = price_item(_ring(), 6000)
    assert line.net_weight == Decimal("10.000")
    assert line.metal_value == Decimal("60000.00")
    assert line.making_charge == Decimal("6000.00")
    assert line.exchange_deduction == Decimal("0.00")
    assert line.total == Decimal("66000.00")


def test_exchange_item_loses_three_percent():
    line = price_item(_ring(is_exchange=True), 6000)
    assert line.pre_deduction_total == Decimal("66000.00")
    assert line.exchange_deduction == Decimal("1980.00")
    assert line.total == Decimal("64020.00")


def test_fixed_and_per_gram_charges():
    fixed = price_item(_ring(making_charge_type=MakingChargeType.FIXED, making_charge_value=Decimal("750")), 6000)
    assert fixed.making_charge == Decimal("750.00")

    per_gram = price_item(
        _ring(gross_weight=Decimal("12.5"), less_weight=Decimal("2.5"),
              making_charge_type=MakingChargeType.PER_GRAM, making_charge_value=Decimal("450")),
        6000,
    )
    assert per_gram.net_weight == Decimal("10.000")
    assert per_gram.making_charge == Decimal("4500.00")
    assert per_gram.total == Decimal("64500.00")


def test_discount_never_makes_making_charge_negative():
    line = price_item(
        _ring(making_charge_type=MakingChargeType.FIXED, making_charge_value=Decimal("500"),
              discount_on_making=Decimal("800")),
        6000,
    )
    assert line.making_charge == Decimal("0.00")
    assert line.total == Decimal("60000.00")


def test_other_charges_added_to_total():
    line = price_item(_ring(other_charges=Decimal("250.50")), 6000)
    assert line.total == Decimal("66250.50")


def test_less_weight_above_gross_rejected():
    with pytest.raises(ValidationError, match="gross weight must exceed less weight"):
        price_item(_ring(gross_weight=Decimal("5"), less_weight=Decimal("6")), 6000)


def test_missing_rate_raises():
    with pytest.raises(RateNotFoundError):
        price_item(_ring(), None)


@pytest.mark.parametrize("rate", [0, -100])
def test_non_positive_rate_rejected(rate):
    with pytest.raises(ValidationError):
        price_item(_ring(), rate)


def test_negative_charges_rejected():
    with pytest.raises(ValidationError):
        price_item(_ring(other_charges=Decimal("-1")), 6000)


def test_bad_making_charge_type():
    with pytest.raises(ValidationError):
        price_item(_ring(making_charge_type="PERC"), 6000)


def test_exchange_rate_quote():
    assert exchange_rate(6000) == Decimal("5820.00")
