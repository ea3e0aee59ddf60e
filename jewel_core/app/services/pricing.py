"""
Jewellery Pricing Engine
========================
Pure functions turning raw item inputs into a priced line item:

1. net weight   = gross weight - less weight
2. metal value  = net weight x rate (rate is per carat for diamonds)
3. making charge by policy (FIX / % / GRM), minus discount, floored at 0
4. total        = metal value + making charge + other charges
5. exchange items lose a flat 3% of that total

No I/O. Looking up the applicable rate is the caller's job.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

from ..config import EXCHANGE_DEDUCTION_PERCENT, MONEY_PLACES, WEIGHT_PLACES
from ..models import ItemUnit, MakingChargeType, MetalType
from .errors import RateNotFoundError, ValidationError


# =============================================================================
# DECIMAL UTILITIES
# =============================================================================

def to_decimal(value, field_name: str = "value") -> Decimal:
    """Convert any numeric input to Decimal via its string form."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number, got {value!r}")


def money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def weight(value) -> Decimal:
    return to_decimal(value).quantize(WEIGHT_PLACES, rounding=ROUND_HALF_UP)


# =============================================================================
# ITEM TYPES
# =============================================================================

@dataclass
class RawItem:
    """Item fields as submitted by the billing counter."""
    product_name: str
    metal_type: MetalType
    purity: str
    gross_weight: Decimal
    less_weight: Decimal = Decimal("0")
    quantity: int = 1
    unit: ItemUnit = ItemUnit.PIECE
    making_charge_type: MakingChargeType = MakingChargeType.FIXED
    making_charge_value: Decimal = Decimal("0")
    discount_on_making: Decimal = Decimal("0")
    other_charges: Decimal = Decimal("0")
    is_exchange: bool = False
    rate: Optional[Decimal] = None  # manual override of the rate table
    huid: Optional[str] = None
    tunch: Optional[str] = None
    stamp: Optional[str] = None


@dataclass
class LineItem:
    """A priced item. Derived fields are fixed once computed."""
    product_name: str
    metal_type: MetalType
    purity: str
    quantity: int
    unit: ItemUnit
    gross_weight: Decimal
    less_weight: Decimal
    net_weight: Decimal
    rate: Decimal
    making_charge_type: MakingChargeType
    making_charge_value: Decimal
    discount_on_making: Decimal
    other_charges: Decimal
    is_exchange: bool
    metal_value: Decimal
    making_charge: Decimal
    exchange_deduction: Decimal
    total: Decimal
    huid: Optional[str] = None
    tunch: Optional[str] = None
    stamp: Optional[str] = None

    @property
    def pre_deduction_total(self) -> Decimal:
        return self.metal_value + self.making_charge + self.other_charges

    @property
    def sku(self):
        return (self.metal_type, self.purity, self.product_name)


# =============================================================================
# PRICING STEPS
# =============================================================================

def compute_net_weight(gross_weight, less_weight) -> Decimal:
    gross = weight(gross_weight)
    less = weight(less_weight)
    if gross < 0:
        raise ValidationError("gross weight cannot be negative")
    if less < 0:
        raise ValidationError("less weight cannot be negative")
    net = gross - less
    if net < 0:
        raise ValidationError(
            f"gross weight must exceed less weight (gross {gross}, less {less})"
        )
    return net


def compute_making_charge(charge_type, value, metal_value: Decimal, net_weight: Decimal) -> Decimal:
    """Raw making charge for a policy, before any discount."""
    try:
        charge_type = MakingChargeType(charge_type)
    except ValueError:
        raise ValidationError(
            f"making charge type must be one of FIX, %, GRM (got {charge_type!r})"
        )
    value = to_decimal(value, "making charge")

    if charge_type == MakingChargeType.FIXED:
        return money(value)
    if charge_type == MakingChargeType.PERCENT:
        return money(metal_value * value / Decimal("100"))
    return money(net_weight * value)


def apply_making_discount(making_charge: Decimal, discount) -> Decimal:
    return max(Decimal("0.00"), money(making_charge - to_decimal(discount, "discount on making")))


def compute_exchange_deduction(pre_deduction_total: Decimal) -> Decimal:
    return money(pre_deduction_total * EXCHANGE_DEDUCTION_PERCENT / Decimal("100"))


def _validate_inputs(raw: RawItem, rate: Decimal):
    if rate <= 0:
        raise ValidationError(f"rate must be greater than zero (got {rate})")
    if raw.quantity is None or int(raw.quantity) < 0:
        raise ValidationError("quantity cannot be negative")
    for name in ("making_charge_value", "discount_on_making", "other_charges"):
        if to_decimal(getattr(raw, name), name) < 0:
            raise ValidationError(f"{name.replace('_', ' ')} cannot be negative")


def price_item(raw: RawItem, rate) -> LineItem:
    """
    Price one item.

    Raises:
        RateNotFoundError: if no rate could be supplied
        ValidationError: on negative geometry or charges, or a non-positive rate
    """
    if rate is None:
        raise RateNotFoundError(raw.metal_type, raw.purity)
    rate = to_decimal(rate, "rate")

    net_weight = compute_net_weight(raw.gross_weight, raw.less_weight)
    _validate_inputs(raw, rate)

    metal_value = money(net_weight * rate)
    making_charge = compute_making_charge(
        raw.making_charge_type, raw.making_charge_value, metal_value, net_weight
    )
    making_charge = apply_making_discount(making_charge, raw.discount_on_making)
    other_charges = money(raw.other_charges)

    pre_deduction_total = metal_value + making_charge + other_charges
    if raw.is_exchange:
        exchange_deduction = compute_exchange_deduction(pre_deduction_total)
    else:
        exchange_deduction = Decimal("0.00")
    total = pre_deduction_total - exchange_deduction

    return LineItem(
        product_name=raw.product_name,
        metal_type=MetalType(raw.metal_type),
        purity=raw.purity,
        quantity=int(raw.quantity),
        unit=ItemUnit(raw.unit),
        gross_weight=weight(raw.gross_weight),
        less_weight=weight(raw.less_weight),
        net_weight=net_weight,
        rate=rate,
        making_charge_type=MakingChargeType(raw.making_charge_type),
        making_charge_value=money(raw.making_charge_value),
        discount_on_making=money(raw.discount_on_making),
        other_charges=other_charges,
        is_exchange=bool(raw.is_exchange),
        metal_value=metal_value,
        making_charge=making_charge,
        exchange_deduction=exchange_deduction,
        total=total,
        huid=raw.huid,
        tunch=raw.tunch,
        stamp=raw.stamp,
    )


def exchange_rate(market_rate) -> Decimal:
    """Rate offered for old metal: market rate less the exchange deduction."""
    market_rate = to_decimal(market_rate, "rate")
    return money(market_rate - market_rate * EXCHANGE_DEDUCTION_PERCENT / Decimal("100"))
