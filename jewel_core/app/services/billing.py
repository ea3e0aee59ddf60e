"""
Bill aggregation and amount-in-words.

GST is never derived here: cgst/sgst/igst are absolute amounts entered at the
counter and simply added to the item subtotal.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Iterable, List, Optional

from .errors import EmptyBillError, ValidationError
from .pricing import LineItem, money, to_decimal


@dataclass
class TaxFields:
    cgst: Decimal = Decimal("0")
    sgst: Decimal = Decimal("0")
    igst: Decimal = Decimal("0")


@dataclass
class BillTotals:
    subtotal: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_gst: Decimal
    total_amount: Decimal
    amount_in_words: str
    metal_value: Decimal
    making_value: Decimal
    exchange_value: Decimal
    has_exchange: bool
    exchange_items_count: int
    new_items_count: int


def aggregate(items: Iterable[LineItem], tax: Optional[TaxFields] = None) -> BillTotals:
    """
    Sum priced items into bill totals.

    Raises:
        EmptyBillError: if there are no items
        ValidationError: if a tax amount is negative
    """
    items: List[LineItem] = list(items)
    if not items:
        raise EmptyBillError()
    tax = tax or TaxFields()

    cgst = money(tax.cgst)
    sgst = money(tax.sgst)
    igst = money(tax.igst)
    for name, amount in (("cgst", cgst), ("sgst", sgst), ("igst", igst)):
        if amount < 0:
            raise ValidationError(f"{name} cannot be negative")

    subtotal = sum((item.total for item in items), Decimal("0.00"))
    total_gst = cgst + sgst + igst
    total_amount = subtotal + total_gst

    exchange_items = [item for item in items if item.is_exchange]
    new_items = [item for item in items if not item.is_exchange]

    return BillTotals(
        subtotal=subtotal,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        total_gst=total_gst,
        total_amount=total_amount,
        amount_in_words=number_to_words(total_amount),
        metal_value=sum((item.metal_value for item in new_items), Decimal("0.00")),
        making_value=sum((item.making_charge for item in new_items), Decimal("0.00")),
        exchange_value=sum((item.total for item in exchange_items), Decimal("0.00")),
        has_exchange=bool(exchange_items),
        exchange_items_count=len(exchange_items),
        new_items_count=len(new_items),
    )


# =============================================================================
# AMOUNT IN WORDS (Indian numbering: crore / lakh / thousand / hundred)
# =============================================================================

_ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
    "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
    "Seventeen", "Eighteen", "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def _two_digits(n: int) -> str:
    if n < 20:
        return _ONES[n]
    tens, ones = divmod(n, 10)
    return f"{_TENS[tens]} {_ONES[ones]}".strip()


def _integer_words(n: int) -> str:
    if n == 0:
        return "Zero"

    parts = []
    crore, n = divmod(n, 10_000_000)
    lakh, n = divmod(n, 100_000)
    thousand, n = divmod(n, 1_000)
    hundred, n = divmod(n, 100)

    if crore:
        # amounts beyond 99 crore keep stacking crores: "One Hundred Crore"
        parts.append(f"{_integer_words(crore)} Crore")
    if lakh:
        parts.append(f"{_two_digits(lakh)} Lakh")
    if thousand:
        parts.append(f"{_two_digits(thousand)} Thousand")
    if hundred:
        parts.append(f"{_ONES[hundred]} Hundred")
    if n:
        parts.append(_two_digits(n))
    return " ".join(parts)


def number_to_words(amount) -> str:
    """
    Render a rupee amount as words.

    >>> number_to_words(134000)
    'One Lakh Thirty Four Thousand Rupees Only'
    >>> number_to_words(0.5)
    'Zero Rupees and Fifty Paise Only'
    """
    amount = to_decimal(amount, "amount")
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"amount must be a non-negative number, got {amount}")

    rupees = int(amount.to_integral_value(rounding=ROUND_FLOOR))
    paise = int(((amount - rupees) * 100).to_integral_value(rounding=ROUND_HALF_UP))
    if paise == 100:
        rupees, paise = rupees + 1, 0

    words = f"{_integer_words(rupees)} Rupees"
    if paise:
        words += f" and {_two_digits(paise)} Paise"
    return words + " Only"
