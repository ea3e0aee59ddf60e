from decimal import Decimal

import pytest

from jewel_core.app.models import MakingChargeType, MetalType
from jewel_core.app.services.billing import TaxFields, aggregate, number_to_words
from jewel_core.app.services.errors import EmptyBillError, ValidationError
from jewel_core.app.services.pricing import RawItem, price_item


def _line(is_exchange=False):
    raw = RawItem(
        product_name="Ring",
        metal_type=MetalType.GOLD,
        purity="22K",
        gross_weight=Decimal("10"),
        making_charge_type=MakingChargeType.PERCENT,
        making_charge_value=Decimal("10"),
        is_exchange=is_exchange,
    )
    return price_item(raw, 6000)


def test_two_items_with_gst():
    totals = aggregate([_line(), _line()], TaxFields(cgst=Decimal("1000"), sgst=Decimal("1000")))
    assert totals.subtotal == Decimal("132000.00")
    assert totals.total_gst == Decimal("2000.00")
    assert totals.total_amount == Decimal("134000.00")
    assert totals.amount_in_words == "One Lakh Thirty Four Thousand Rupees Only"
    assert totals.metal_value == Decimal("120000.00")
    assert totals.making_value == Decimal("12000.00")
    assert not totals.has_exchange
    assert totals.new_items_count == 2


def test_exchange_items_counted_separately():
    totals = aggregate([_line(), _line(is_exchange=True)])
    assert totals.subtotal == Decimal("130020.00")
    assert totals.exchange_value == Decimal("64020.00")
    assert totals.metal_value == Decimal("60000.00")
    assert totals.has_exchange
    assert totals.exchange_items_count == 1
    assert totals.new_items_count == 1


def test_gst_is_never_derived():
    totals = aggregate([_line()])
    assert totals.total_gst == Decimal("0.00")
    assert totals.total_amount == totals.subtotal


def test_empty_bill():
    with pytest.raises(EmptyBillError):
        aggregate([])


def test_negative_tax_rejected():
    with pytest.raises(ValidationError, match="igst"):
        aggregate([_line()], TaxFields(igst=Decimal("-5")))


@pytest.mark.parametrize("amount, words", [
    (0, "Zero Rupees Only"),
    (0.5, "Zero Rupees and Fifty Paise Only"),
    (99, "Ninety Nine Rupees Only"),
    (100, "One Hundred Rupees Only"),
    (999, "Nine Hundred Ninety Nine Rupees Only"),
    (1000, "One Thousand Rupees Only"),
    (99999, "Ninety Nine Thousand Nine Hundred Ninety Nine Rupees Only"),
    (100000, "One Lakh Rupees Only"),
    (134000, "One Lakh Thirty Four Thousand Rupees Only"),
    (9999999, "Ninety Nine Lakh Ninety Nine Thousand Nine Hundred Ninety Nine Rupees Only"),
    (10000000, "One Crore Rupees Only"),
    (Decimal("1250.75"), "One Thousand Two Hundred Fifty Rupees and Seventy Five Paise Only"),
])
def test_number_to_words(amount, words):
    assert number_to_words(amount) == words


def test_number_to_words_rejects_negative():
    with pytest.raises(ValidationError):
        number_to_words(-1)
