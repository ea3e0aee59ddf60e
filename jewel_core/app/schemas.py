import re
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, validator

from .config import shop_today
from .models import (
    ItemUnit, MakingChargeType, MetalType, PaymentMode, PaymentStatus
)
from .security import MIN_PASSWORD_LENGTH
from .services.bill_service import BillDraft, CustomerInfo
from .services.billing import TaxFields
from .services.pricing import RawItem

PAN_PATTERN = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
AADHAAR_PATTERN = re.compile(r"^\d{12}$")
PHONE_PATTERN = re.compile(r"^\+?\d{10,13}$")


# =============================================================================
# AUTH
# =============================================================================

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str = "Staff"


class UserCreate(BaseModel):
    full_name: str
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    role: str = "Staff"


class UserOut(BaseModel):
    id: int
    full_name: str
    email: EmailStr
    username: str
    role: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# BILLS
# =============================================================================

class CustomerIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    phone: str
    address: Optional[str] = None
    dob: Optional[date] = None
    pan: Optional[str] = None
    aadhaar: Optional[str] = None

    @validator('name')
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Customer name is required")
        return v

    @validator('phone')
    def validate_phone(cls, v):
        v = re.sub(r"[\s-]", "", v or "")
        if not PHONE_PATTERN.match(v):
            raise ValueError("Customer phone must have 10 to 13 digits")
        return v

    @validator('pan')
    def validate_pan(cls, v):
        if not v:
            return None
        v = v.strip().upper()
        if not PAN_PATTERN.match(v):
            raise ValueError("PAN must look like ABCDE1234F")
        return v

    @validator('aadhaar')
    def validate_aadhaar(cls, v):
        if not v:
            return None
        v = re.sub(r"\s", "", v)
        if not AADHAAR_PATTERN.match(v):
            raise ValueError("Aadhaar must be 12 digits")
        return v

    @validator('dob')
    def validate_dob(cls, v):
        if v is not None and v > shop_today():
            raise ValueError("Date of birth cannot be in the future")
        return v

    def to_info(self) -> CustomerInfo:
        return CustomerInfo(
            name=self.name, phone=self.phone, address=self.address,
            dob=self.dob, pan=self.pan, aadhaar=self.aadhaar
        )


class BillItemIn(BaseModel):
    """One article as typed at the counter; numbers are checked by the pricing engine"""
    product_name: str = Field(..., min_length=1, max_length=200)
    metal_type: MetalType
    purity: str = Field(..., min_length=1, max_length=30)
    gross_weight: Decimal
    less_weight: Decimal = Decimal("0")
    quantity: int = 1
    unit: ItemUnit = ItemUnit.PIECE
    making_charge_type: MakingChargeType = MakingChargeType.FIXED
    making_charge_value: Decimal = Decimal("0")
    discount_on_making: Decimal = Decimal("0")
    other_charges: Decimal = Decimal("0")
    is_exchange: bool = False
    rate: Optional[Decimal] = Field(None, description="Manual rate overriding the rate table")
    huid: Optional[str] = Field(None, max_length=20)
    tunch: Optional[str] = Field(None, max_length=20)
    stamp: Optional[str] = Field(None, max_length=50)

    def to_raw(self) -> RawItem:
        return RawItem(
            product_name=self.product_name.strip(),
            metal_type=self.metal_type,
            purity=self.purity.strip(),
            gross_weight=self.gross_weight,
            less_weight=self.less_weight,
            quantity=self.quantity,
            unit=self.unit,
            making_charge_type=self.making_charge_type,
            making_charge_value=self.making_charge_value,
            discount_on_making=self.discount_on_making,
            other_charges=self.other_charges,
            is_exchange=self.is_exchange,
            rate=self.rate,
            huid=self.huid,
            tunch=self.tunch,
            stamp=self.stamp,
        )


class BillCreate(BaseModel):
    customer: CustomerIn
    items: List[BillItemIn]
    cgst: Decimal = Decimal("0")
    sgst: Decimal = Decimal("0")
    igst: Decimal = Decimal("0")
    payment_mode: PaymentMode = PaymentMode.CASH
    payment_status: PaymentStatus = PaymentStatus.PAID
    bill_date: Optional[datetime] = None

    def to_draft(self) -> BillDraft:
        return BillDraft(
            customer=self.customer.to_info(),
            items=[item.to_raw() for item in self.items],
            tax=TaxFields(cgst=self.cgst, sgst=self.sgst, igst=self.igst),
            payment_mode=self.payment_mode,
            payment_status=self.payment_status,
            bill_date=self.bill_date,
        )


class BillItemOut(BaseModel):
    id: int
    position: int
    product_name: str
    metal_type: MetalType
    purity: str
    huid: Optional[str]
    tunch: Optional[str]
    stamp: Optional[str]
    unit: ItemUnit
    quantity: int
    gross_weight: float
    less_weight: float
    net_weight: float
    rate: float
    making_charge_type: MakingChargeType
    making_charge_value: float
    discount_on_making: float
    other_charges: float
    is_exchange: bool
    metal_value: float
    making_charge: float
    exchange_deduction: float
    total: float

    class Config:
        from_attributes = True


class BillOut(BaseModel):
    id: int
    bill_number: str
    number_is_fallback: bool
    bill_date: datetime
    customer_name: str
    customer_phone: str
    customer_address: Optional[str]
    customer_dob: Optional[date]
    customer_pan: Optional[str]
    customer_aadhaar: Optional[str]
    metal_value: float
    making_value: float
    exchange_value: float
    subtotal: float
    cgst: float
    sgst: float
    igst: float
    total_gst: float
    total_amount: float
    amount_in_words: Optional[str]
    payment_mode: PaymentMode
    payment_status: PaymentStatus
    has_exchange: bool
    exchange_items_count: int
    new_items_count: int
    stock_synced: bool
    created_at: datetime
    items: List[BillItemOut] = []

    class Config:
        from_attributes = True


class BillSummaryOut(BaseModel):
    id: int
    bill_number: str
    bill_date: datetime
    customer_name: str
    customer_phone: str
    total_amount: float
    payment_mode: PaymentMode
    payment_status: PaymentStatus
    has_exchange: bool
    stock_synced: bool

    class Config:
        from_attributes = True


class BillListOut(BaseModel):
    bills: List[BillSummaryOut]
    total: int
    page: int
    limit: int
    pages: int


class BillWriteOut(BaseModel):
    """Stored bill plus the outcome of its stock application"""
    bill: BillOut
    stock_synced: bool
    stock_error: Optional[dict] = None


class CalculationOut(BaseModel):
    items: List[dict]
    metal_value: float
    making_value: float
    exchange_value: float
    subtotal: float
    cgst: float
    sgst: float
    igst: float
    total_gst: float
    total_amount: float
    amount_in_words: str
    has_exchange: bool
    exchange_items_count: int
    new_items_count: int
