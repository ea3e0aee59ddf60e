"""
Jewellery Billing Service
=========================
Creates, edits and deletes bills and keeps the stock ledger in step.

The bill and the ledger are written in separate commits:

- create: price -> aggregate -> number -> store bill -> apply to stock.
  A ledger failure leaves the stored bill in place with
  ``stock_synced=False``; re-running the synchronizer fixes it.
- edit:   price -> revert old items -> replace items -> store -> apply new.
- delete: revert -> delete bill -> remove the invoice document.

Once a revert is committed nothing rolls it back automatically: a failure
after that point raises ReconciliationRequiredError.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_bill_number_attempts, get_shop_code, shop_now, shop_today
from ..models import (
    AuditLog, Bill, BillItem, MetalType, PaymentMode, PaymentStatus, User
)
from . import bill_sync
from .billing import BillTotals, TaxFields, aggregate
from .errors import (
    DuplicateBillNumberError, NotFoundError, ReconciliationRequiredError,
    StockWriteError
)
from .numbering import is_bill_number_conflict, is_fallback_number, next_bill_number
from .pricing import LineItem, RawItem, price_item
from .rate_service import RateService
from .stock_service import commit_stock

logger = logging.getLogger(__name__)


# =============================================================================
# INPUT / OUTPUT TYPES
# =============================================================================

@dataclass
class CustomerInfo:
    name: str
    phone: str
    address: Optional[str] = None
    dob: Optional[date] = None
    pan: Optional[str] = None
    aadhaar: Optional[str] = None


@dataclass
class BillDraft:
    """Everything the counter submits for a bill."""
    customer: CustomerInfo
    items: List[RawItem]
    tax: TaxFields = field(default_factory=TaxFields)
    payment_mode: PaymentMode = PaymentMode.CASH
    payment_status: PaymentStatus = PaymentStatus.PAID
    bill_date: Optional[datetime] = None


@dataclass
class BillResult:
    bill: Bill
    stock_error: Optional[StockWriteError] = None

    @property
    def stock_synced(self) -> bool:
        return self.stock_error is None


Allocator = Callable[[Session, str, Optional[date]], str]


# =============================================================================
# HELPERS
# =============================================================================

def _actor(user: Optional[User]) -> Optional[str]:
    return user.username if user is not None else None


def _user_id(user: Optional[User]) -> Optional[int]:
    return user.id if user is not None else None


def _bill_item(line: LineItem, position: int) -> BillItem:
    return BillItem(
        position=position,
        product_name=line.product_name,
        metal_type=line.metal_type,
        purity=line.purity,
        huid=line.huid,
        tunch=line.tunch,
        stamp=line.stamp,
        unit=line.unit,
        quantity=line.quantity,
        gross_weight=line.gross_weight,
        less_weight=line.less_weight,
        net_weight=line.net_weight,
        rate=line.rate,
        making_charge_type=line.making_charge_type,
        making_charge_value=line.making_charge_value,
        discount_on_making=line.discount_on_making,
        other_charges=line.other_charges,
        is_exchange=line.is_exchange,
        metal_value=line.metal_value,
        making_charge=line.making_charge,
        exchange_deduction=line.exchange_deduction,
        total=line.total,
    )


def line_item_from_model(item: BillItem) -> LineItem:
    return LineItem(
        product_name=item.product_name,
        metal_type=item.metal_type,
        purity=item.purity,
        quantity=item.quantity,
        unit=item.unit,
        gross_weight=Decimal(item.gross_weight),
        less_weight=Decimal(item.less_weight or 0),
        net_weight=Decimal(item.net_weight),
        rate=Decimal(item.rate),
        making_charge_type=item.making_charge_type,
        making_charge_value=Decimal(item.making_charge_value or 0),
        discount_on_making=Decimal(item.discount_on_making or 0),
        other_charges=Decimal(item.other_charges or 0),
        is_exchange=bool(item.is_exchange),
        metal_value=Decimal(item.metal_value),
        making_charge=Decimal(item.making_charge),
        exchange_deduction=Decimal(item.exchange_deduction or 0),
        total=Decimal(item.total),
        huid=item.huid,
        tunch=item.tunch,
        stamp=item.stamp,
    )


def _apply_draft(bill: Bill, draft: BillDraft, lines: List[LineItem], totals: BillTotals) -> None:
    customer = draft.customer
    bill.customer_name = customer.name
    bill.customer_phone = customer.phone
    bill.customer_address = customer.address or None
    bill.customer_dob = customer.dob
    bill.customer_pan = customer.pan or None
    bill.customer_aadhaar = customer.aadhaar or None

    bill.items = [_bill_item(line, position) for position, line in enumerate(lines)]

    bill.metal_value = totals.metal_value
    bill.making_value = totals.making_value
    bill.exchange_value = totals.exchange_value
    bill.subtotal = totals.subtotal
    bill.cgst = totals.cgst
    bill.sgst = totals.sgst
    bill.igst = totals.igst
    bill.total_gst = totals.total_gst
    bill.total_amount = totals.total_amount
    bill.amount_in_words = totals.amount_in_words

    bill.has_exchange = totals.has_exchange
    bill.exchange_items_count = totals.exchange_items_count
    bill.new_items_count = totals.new_items_count

    bill.payment_mode = draft.payment_mode
    bill.payment_status = draft.payment_status
    if draft.bill_date is not None:
        bill.bill_date = draft.bill_date


def _audit(db: Session, bill: Bill, action: str, user: Optional[User], old_values: Optional[dict] = None):
    # customer identity documents stay out of the audit trail
    db.add(AuditLog(
        entity_type="bill",
        entity_id=bill.id,
        action=action,
        old_values=json.dumps(old_values) if old_values else None,
        new_values=json.dumps({
            "bill_number": bill.bill_number,
            "items": len(bill.items),
            "total_amount": str(bill.total_amount),
        }),
        user_id=_user_id(user),
    ))


def _snapshot(bill: Bill) -> dict:
    return {
        "bill_number": bill.bill_number,
        "items": len(bill.items),
        "total_amount": str(bill.total_amount),
    }


def _skus(bill: Bill) -> List[str]:
    return [bill_sync.sku_label(item) for item in bill.items]


def remove_document(path: Optional[str]) -> bool:
    """Delete a generated invoice file; missing files are ignored."""
    if not path:
        return False
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Could not remove invoice document %s: %s", path, e)
        return False


# =============================================================================
# BILL SERVICE
# =============================================================================

class BillService:
    """Bill lifecycle with stock synchronization"""

    @staticmethod
    def price_items(db: Session, items: List[RawItem]) -> List[LineItem]:
        """Resolve each item's rate and price it. Any failure blocks the whole bill."""
        return [price_item(raw, RateService.resolve_rate(db, raw)) for raw in items]

    @staticmethod
    def calculate(db: Session, draft: BillDraft) -> Tuple[List[LineItem], BillTotals]:
        """Price and aggregate without storing anything."""
        lines = BillService.price_items(db, draft.items)
        return lines, aggregate(lines, draft.tax)

    @staticmethod
    def recompute_totals(bill: Bill) -> BillTotals:
        """Totals re-derived from the stored items and tax amounts."""
        return aggregate(
            [line_item_from_model(item) for item in bill.items],
            TaxFields(cgst=bill.cgst or 0, sgst=bill.sgst or 0, igst=bill.igst or 0),
        )

    @staticmethod
    def create_bill(
        db: Session,
        draft: BillDraft,
        user: Optional[User] = None,
        allocator: Allocator = next_bill_number,
        prefix: Optional[str] = None,
        today: Optional[date] = None
    ) -> BillResult:
        """
        Price, number, store and apply a new bill.

        Raises:
            ValidationError, RateNotFoundError, EmptyBillError: nothing is stored
            DuplicateBillNumberError: numbering kept colliding after the allowed attempts
        """
        lines, totals = BillService.calculate(db, draft)
        prefix = prefix or get_shop_code()
        bill_date = draft.bill_date or shop_now()
        # the number's date segment follows the bill's own date
        today = today or bill_date.date()
        attempts = get_bill_number_attempts()

        bill = None
        number = None
        for attempt in range(1, attempts + 1):
            try:
                number = allocator(db, prefix, today)
                bill = Bill(
                    bill_number=number,
                    number_is_fallback=is_fallback_number(number),
                    created_by=_user_id(user),
                )
                _apply_draft(bill, draft, lines, totals)
                bill.bill_date = bill_date
                db.add(bill)
                db.flush()
                _audit(db, bill, "create", user)
                db.commit()
                break
            except DuplicateBillNumberError as e:
                number = e.bill_number
            except IntegrityError as e:
                db.rollback()
                if not is_bill_number_conflict(e):
                    raise
            logger.warning(
                "Bill number %s collided (attempt %d of %d); allocating again",
                number, attempt, attempts
            )
            bill = None

        if bill is None:
            raise DuplicateBillNumberError(number, attempts)

        if bill.number_is_fallback:
            logger.warning("Bill %s was stored with a fallback number", bill.bill_number)
        logger.info("Created bill %s for %s", bill.bill_number, bill.total_amount)

        try:
            bill_sync.apply_bill(db, bill, _actor(user))
            commit_stock(db, _skus(bill), bill.bill_number)
        except StockWriteError as e:
            db.rollback()
            e.bill_number = bill.bill_number
            logger.error(
                "Bill %s stored but stock not updated (%s); re-sync required",
                bill.bill_number, e
            )
            return BillResult(bill=bill, stock_error=e)

        return BillResult(bill=bill)

    @staticmethod
    def update_bill(
        db: Session,
        bill_id: int,
        draft: BillDraft,
        user: Optional[User] = None
    ) -> BillResult:
        """
        Replace a bill's items and re-derive its totals.

        Raises:
            ValidationError, RateNotFoundError, EmptyBillError: nothing changed
            StockWriteError: the old items could not be reverted; nothing changed
            ReconciliationRequiredError: stock was reverted but a later step failed
        """
        bill = BillService.get_bill(db, bill_id)
        lines, totals = BillService.calculate(db, draft)
        actor = _actor(user)
        old = _snapshot(bill)
        old_skus = _skus(bill)

        try:
            bill_sync.revert_bill(db, bill, actor)
            commit_stock(db, old_skus, bill.bill_number)
        except StockWriteError:
            db.rollback()
            raise

        try:
            _apply_draft(bill, draft, lines, totals)
            db.flush()
            _audit(db, bill, "update", user, old_values=old)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Bill %s not saved after its stock was reverted: %s", bill.bill_number, e)
            raise ReconciliationRequiredError(
                f"Bill {bill.bill_number} could not be saved after its stock was reverted; "
                "manual review required",
                bill_number=bill.bill_number,
                skus=old_skus
            ) from e

        try:
            bill_sync.apply_bill(db, bill, actor)
            commit_stock(db, _skus(bill), bill.bill_number)
        except StockWriteError as e:
            db.rollback()
            logger.error("Bill %s updated but new items not applied to stock: %s", bill.bill_number, e)
            raise ReconciliationRequiredError(
                f"Bill {bill.bill_number} was updated but its items could not be applied to stock; "
                "manual review required",
                bill_number=bill.bill_number,
                skus=sorted(set(old_skus) | set(e.skus))
            ) from e

        logger.info("Updated bill %s", bill.bill_number)
        return BillResult(bill=bill)

    @staticmethod
    def delete_bill(db: Session, bill_id: int, user: Optional[User] = None) -> str:
        """
        Revert a bill's stock effect, delete it and its invoice document.

        Raises:
            StockWriteError: the revert failed; nothing changed
            ReconciliationRequiredError: stock was reverted but the bill was not deleted
        """
        bill = BillService.get_bill(db, bill_id)
        number = bill.bill_number
        skus = _skus(bill)
        document_path = bill.document_path

        try:
            bill_sync.revert_bill(db, bill, _actor(user))
            commit_stock(db, skus, number)
        except StockWriteError:
            db.rollback()
            raise

        try:
            _audit(db, bill, "delete", user, old_values=_snapshot(bill))
            db.delete(bill)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Bill %s not deleted after its stock was reverted: %s", number, e)
            raise ReconciliationRequiredError(
                f"Bill {number} could not be deleted after its stock was reverted; "
                "manual review required",
                bill_number=number,
                skus=skus
            ) from e

        remove_document(document_path)
        logger.info("Deleted bill %s", number)
        return number

    @staticmethod
    def resync_stock(db: Session, bill_id: int, user: Optional[User] = None) -> Bill:
        """Apply any items of a stored bill that are missing from the ledger."""
        bill = BillService.get_bill(db, bill_id)
        try:
            bill_sync.apply_bill(db, bill, _actor(user))
            commit_stock(db, _skus(bill), bill.bill_number)
        except StockWriteError:
            db.rollback()
            raise
        return bill

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @staticmethod
    def get_bill(db: Session, bill_id: int) -> Bill:
        bill = db.query(Bill).filter(Bill.id == bill_id).first()
        if not bill:
            raise NotFoundError("Bill not found")
        return bill

    @staticmethod
    def get_by_number(db: Session, bill_number: str) -> Bill:
        bill = db.query(Bill).filter(Bill.bill_number == bill_number).first()
        if not bill:
            raise NotFoundError("Bill not found")
        return bill

    @staticmethod
    def list_bills(
        db: Session,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
        metal_type: Optional[MetalType] = None,
        payment_status: Optional[PaymentStatus] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[Bill], int]:
        query = db.query(Bill)

        if start_date:
            query = query.filter(Bill.bill_date >= datetime.combine(start_date, time.min))
        if end_date:
            query = query.filter(Bill.bill_date < datetime.combine(end_date + timedelta(days=1), time.min))
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Bill.bill_number.ilike(pattern),
                Bill.customer_name.ilike(pattern),
                Bill.customer_phone.ilike(pattern)
            ))
        if metal_type:
            query = query.filter(Bill.items.any(BillItem.metal_type == MetalType(metal_type)))
        if payment_status:
            query = query.filter(Bill.payment_status == PaymentStatus(payment_status))

        total = query.count()
        bills = query.order_by(
            Bill.bill_date.desc(), Bill.id.desc()
        ).offset((page - 1) * limit).limit(limit).all()
        return bills, total

    @staticmethod
    def bills_between(db: Session, start: datetime, end: datetime) -> List[Bill]:
        return db.query(Bill).filter(
            Bill.bill_date >= start,
            Bill.bill_date < end
        ).order_by(Bill.bill_date.asc()).all()

    @staticmethod
    def daily_report(db: Session, day: Optional[date] = None) -> dict:
        day = day or shop_today()
        start = datetime.combine(day, time.min)
        bills = BillService.bills_between(db, start, start + timedelta(days=1))

        payment_modes = {mode.value: Decimal("0") for mode in PaymentMode}
        metal_wise = {}
        exchange_bills = 0
        exchange_value = Decimal("0")

        for bill in bills:
            payment_modes[bill.payment_mode.value] += Decimal(bill.total_amount)
            for item in bill.items:
                if item.is_exchange:
                    continue
                entry = metal_wise.setdefault(item.metal_type.value, {"count": 0, "amount": Decimal("0")})
                entry["count"] += 1
                entry["amount"] += Decimal(item.total)
            if bill.has_exchange:
                exchange_bills += 1
                exchange_value += Decimal(bill.exchange_value or 0)

        return {
            "date": day.isoformat(),
            "total_bills": len(bills),
            "total_sales": float(sum((Decimal(b.total_amount) for b in bills), Decimal("0"))),
            "payment_modes": {k: float(v) for k, v in payment_modes.items()},
            "metal_wise": {k: {"count": v["count"], "amount": float(v["amount"])} for k, v in metal_wise.items()},
            "exchange_summary": {
                "total_exchanges": exchange_bills,
                "total_exchange_value": float(exchange_value),
            },
        }
