"""
Jewellery Shop Data Models
==========================
Billing, stock ledger and rate tables.

Key Features:
- Decimal precision for money (2 places) and weight (3 places)
- Bills own their priced line items; totals are always derived from them
- One stock record per (metal type, purity, product) with an append-only
  transaction log
- Optimistic locking on stock records to prevent lost updates
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text, Boolean,
    Numeric, Enum as SQLEnum, Index, UniqueConstraint, event
)
from sqlalchemy.orm import relationship
from .config import shop_now
from .db import Base


# =============================================================================
# ENUMS
# =============================================================================

class MetalType(str, Enum):
    """Top-level material categories sold by the shop"""
    GOLD = "Gold"
    SILVER = "Silver"
    DIAMOND = "Diamond"
    PLATINUM = "Platinum"
    ANTIQUE_POLKI = "Antique / Polki"
    OTHERS = "Others"


class MakingChargeType(str, Enum):
    """Making charge policies"""
    FIXED = "FIX"     # flat amount per item
    PERCENT = "%"     # percentage of metal value
    PER_GRAM = "GRM"  # amount per gram of net weight


class ItemUnit(str, Enum):
    PIECE = "PCS"
    GRAM = "GM"


class RateUnit(str, Enum):
    GRAM = "gram"
    KG = "kg"
    CARAT = "carat"


class PaymentMode(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    CREDIT = "credit"


class PaymentStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    PARTIAL = "partial"


class TransactionType(str, Enum):
    """Stock ledger transitions"""
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


# =============================================================================
# USERS
# =============================================================================

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# RATES
# =============================================================================

class Rate(Base):
    """
    Current price per unit for a (metal type, purity) pair.
    Read by pricing, never mutated by it.
    """
    __tablename__ = "rates"

    id = Column(Integer, primary_key=True, index=True)
    metal_type = Column(SQLEnum(MetalType), nullable=False)
    purity = Column(String(30), nullable=False)
    rate = Column(Numeric(15, 2), nullable=True)  # empty until the admin prices it
    unit = Column(SQLEnum(RateUnit), default=RateUnit.GRAM, nullable=False)
    gst_applicable = Column(Boolean, default=True)
    is_active = Column(Boolean, default=True)
    effective_date = Column(DateTime, default=datetime.utcnow)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    history = relationship("RateHistory", back_populates="rate_ref", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('metal_type', 'purity', name='uq_rate_metal_purity'),
    )

    @property
    def per_gram_rate(self):
        """Rate normalised for pricing: kg rates become per-gram, carat rates stay per-carat."""
        if self.rate is None:
            return None
        if self.unit == RateUnit.KG:
            return (Decimal(self.rate) / Decimal("1000")).quantize(Decimal("0.0001"))
        return Decimal(self.rate)


class RateHistory(Base):
    """Every rate change, oldest to newest"""
    __tablename__ = "rate_history"

    id = Column(Integer, primary_key=True, index=True)
    rate_id = Column(Integer, ForeignKey("rates.id"), nullable=False)
    metal_type = Column(SQLEnum(MetalType), nullable=False)
    purity = Column(String(30), nullable=False)
    old_rate = Column(Numeric(15, 2), nullable=True)
    new_rate = Column(Numeric(15, 2), nullable=False)
    unit = Column(SQLEnum(RateUnit), nullable=False)
    effective_date = Column(DateTime, default=datetime.utcnow)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    rate_ref = relationship("Rate", back_populates="history")


# =============================================================================
# BILLING
# =============================================================================

class Bill(Base):
    """
    One invoice. Money columns are derived from the items and the manually
    entered GST amounts every time the bill is created or edited.
    """
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True)
    bill_number = Column(String(50), unique=True, nullable=False, index=True)
    number_is_fallback = Column(Boolean, default=False)  # not sequential, reconcile later
    bill_date = Column(DateTime, default=shop_now, nullable=False)  # shop wall clock

    # Customer
    customer_name = Column(String(200), nullable=False)
    customer_phone = Column(String(20), nullable=False, index=True)
    customer_address = Column(Text, nullable=True)
    customer_dob = Column(Date, nullable=True)
    customer_pan = Column(String(10), nullable=True)
    customer_aadhaar = Column(String(12), nullable=True)

    # Totals
    metal_value = Column(Numeric(15, 2), default=0)
    making_value = Column(Numeric(15, 2), default=0)
    exchange_value = Column(Numeric(15, 2), default=0)
    subtotal = Column(Numeric(15, 2), default=0)
    cgst = Column(Numeric(15, 2), default=0)
    sgst = Column(Numeric(15, 2), default=0)
    igst = Column(Numeric(15, 2), default=0)
    total_gst = Column(Numeric(15, 2), default=0)
    total_amount = Column(Numeric(15, 2), default=0)
    amount_in_words = Column(String(500), nullable=True)

    # Payment
    payment_mode = Column(SQLEnum(PaymentMode), default=PaymentMode.CASH)
    payment_status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PAID)

    # Exchange summary
    has_exchange = Column(Boolean, default=False)
    exchange_items_count = Column(Integer, default=0)
    new_items_count = Column(Integer, default=0)

    # Ledger state: True while the current items are applied to stock
    stock_synced = Column(Boolean, default=False)

    # Generated invoice artifact (PDF), removed with the bill
    document_path = Column(String(500), nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "BillItem",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillItem.position",
    )

    __table_args__ = (
        Index('ix_bill_date', 'bill_date'),
    )


class BillItem(Base):
    """A priced article on a bill. Replaced as a whole when the bill is edited."""
    __tablename__ = "bill_items"

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    # Identity
    product_name = Column(String(200), nullable=False)
    metal_type = Column(SQLEnum(MetalType), nullable=False)
    purity = Column(String(30), nullable=False)

    # Display-only fields
    huid = Column(String(20), nullable=True)
    tunch = Column(String(20), nullable=True)
    stamp = Column(String(50), nullable=True)

    # Physical
    unit = Column(SQLEnum(ItemUnit), default=ItemUnit.PIECE)
    quantity = Column(Integer, nullable=False, default=1)
    gross_weight = Column(Numeric(12, 3), nullable=False)
    less_weight = Column(Numeric(12, 3), default=0)
    net_weight = Column(Numeric(12, 3), nullable=False)

    # Pricing inputs
    rate = Column(Numeric(15, 4), nullable=False)
    making_charge_type = Column(SQLEnum(MakingChargeType), default=MakingChargeType.FIXED)
    making_charge_value = Column(Numeric(15, 2), default=0)
    discount_on_making = Column(Numeric(15, 2), default=0)
    other_charges = Column(Numeric(15, 2), default=0)
    is_exchange = Column(Boolean, default=False)

    # Derived
    metal_value = Column(Numeric(15, 2), nullable=False)
    making_charge = Column(Numeric(15, 2), nullable=False)
    exchange_deduction = Column(Numeric(15, 2), default=0)
    total = Column(Numeric(15, 2), nullable=False)

    bill = relationship("Bill", back_populates="items")

    @property
    def sku(self):
        return (self.metal_type, self.purity, self.product_name)


# =============================================================================
# STOCK LEDGER
# =============================================================================

class StockRecord(Base):
    """
    One stock-keeping unit, keyed by (metal type, purity, product name).

    Balances change only through ledger transitions, each of which appends a
    StockTransaction. ``version`` is the optimistic lock: a concurrent writer
    that loaded an older version fails instead of overwriting.
    """
    __tablename__ = "stock_records"

    id = Column(Integer, primary_key=True, index=True)
    metal_type = Column(SQLEnum(MetalType), nullable=False)
    purity = Column(String(30), nullable=False)
    product_name = Column(String(200), nullable=False)
    unit = Column(SQLEnum(ItemUnit), default=ItemUnit.PIECE)

    # Running balances (never negative)
    quantity = Column(Integer, nullable=False, default=0)
    weight = Column(Numeric(15, 3), nullable=False, default=0)

    # Reference prices (per gram)
    cost_price = Column(Numeric(15, 2), nullable=True)
    selling_reference_price = Column(Numeric(15, 2), nullable=True)

    low_stock_threshold = Column(Integer, nullable=False, default=5)
    is_low_stock = Column(Boolean, nullable=False, default=True)

    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    version = Column(Integer, nullable=False)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions = relationship(
        "StockTransaction",
        back_populates="stock_record",
        order_by="StockTransaction.id",
        cascade="save-update, merge",
    )

    __table_args__ = (
        UniqueConstraint('metal_type', 'purity', 'product_name', name='uq_stock_sku'),
        Index('ix_stock_low', 'is_low_stock'),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def sku(self):
        return (self.metal_type, self.purity, self.product_name)

    @property
    def sku_label(self) -> str:
        metal = self.metal_type.value if isinstance(self.metal_type, MetalType) else self.metal_type
        return f"{metal} {self.purity} {self.product_name}"

    def refresh_low_stock(self):
        threshold = self.low_stock_threshold if self.low_stock_threshold is not None else 5
        self.is_low_stock = (self.quantity or 0) <= threshold


@event.listens_for(StockRecord, "before_insert")
@event.listens_for(StockRecord, "before_update")
def _recompute_low_stock(mapper, connection, target):
    target.refresh_low_stock()


class StockTransaction(Base):
    """
    Immutable ledger entry - the audit trail the balances are explained by.

    ``quantity_change``/``weight_change`` are the signed deltas actually applied
    (after clamping at zero); ``requested_*`` keep what the caller asked for.
    """
    __tablename__ = "stock_transactions"

    id = Column(Integer, primary_key=True, index=True)
    stock_id = Column(Integer, ForeignKey("stock_records.id"), nullable=False, index=True)
    transaction_type = Column(SQLEnum(TransactionType), nullable=False)

    quantity_change = Column(Integer, nullable=False, default=0)
    weight_change = Column(Numeric(15, 3), nullable=False, default=0)
    requested_quantity = Column(Integer, nullable=False, default=0)
    requested_weight = Column(Numeric(15, 3), nullable=False, default=0)

    # Snapshots
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    weight_before = Column(Numeric(15, 3), nullable=False)
    weight_after = Column(Numeric(15, 3), nullable=False)

    # Triggering context
    bill_number = Column(String(50), nullable=True, index=True)
    bill_item_id = Column(Integer, nullable=True, index=True)
    notes = Column(Text, nullable=True)
    actor = Column(String(100), nullable=True)

    # Set on the entry that undoes an earlier one
    reversal_of_id = Column(Integer, ForeignKey("stock_transactions.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    stock_record = relationship("StockRecord", back_populates="transactions")

    @property
    def is_clamped(self) -> bool:
        return (
            abs(self.quantity_change or 0) != (self.requested_quantity or 0)
            or abs(Decimal(self.weight_change or 0)) != Decimal(self.requested_weight or 0)
        ) and self.transaction_type != TransactionType.ADJUSTMENT


# =============================================================================
# SYSTEM TABLES
# =============================================================================

class AuditLog(Base):
    """
    General audit log for bill changes.
    Separate from stock transactions.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=False)
    action = Column(String(20), nullable=False)  # create, update, delete

    # JSON stored as text for SQLite compatibility
    old_values = Column(Text, nullable=True)
    new_values = Column(Text, nullable=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
    )


class NumberSequence(Base):
    """
    Counters for document numbers, one row per prefix and day.
    Read with SELECT FOR UPDATE so concurrent allocations serialize.
    """
    __tablename__ = "number_sequences"

    id = Column(Integer, primary_key=True, index=True)
    sequence_name = Column(String(80), unique=True, nullable=False)  # e.g. bill:SMJ/191026
    prefix = Column(String(60), default="")
    current_number = Column(Integer, default=0)
    padding = Column(Integer, default=3)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
