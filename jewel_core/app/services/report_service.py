"""Sales, GST, customer and dashboard figures computed from stored bills."""

import math
from calendar import monthrange
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import shop_today
from ..models import Bill, BillItem, MetalType, StockRecord
from .errors import ValidationError
from .stock_service import StockService

ZERO = Decimal("0")

# average bill value above which a customer counts as premium
PREMIUM_AVERAGE_BILL = Decimal("50000")
CUSTOMER_TYPES = ("all", "new", "regular", "premium")
CUSTOMER_SORT_KEYS = {
    "name": "name",
    "total_purchase": "total_purchase",
    "total_bills": "total_bills",
    "last_purchase": "last_purchase",
    "average_bill_value": "average_bill_value",
    "totalPurchase": "total_purchase",
    "totalBills": "total_bills",
    "lastPurchase": "last_purchase",
    "averageBillValue": "average_bill_value",
}


def _bills(db: Session, start: Optional[datetime], end: Optional[datetime],
           metal_type: Optional[MetalType] = None) -> List[Bill]:
    query = db.query(Bill)
    if start is not None:
        query = query.filter(Bill.bill_date >= start)
    if end is not None:
        query = query.filter(Bill.bill_date < end)
    if metal_type:
        query = query.filter(Bill.items.any(BillItem.metal_type == MetalType(metal_type)))
    return query.order_by(Bill.bill_date.asc(), Bill.id.asc()).all()


def _day_bounds(start_date: Optional[date], end_date: Optional[date]):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("End date must be after start date")
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date + timedelta(days=1), time.min) if end_date else None
    return start, end


def _month_bounds(year: int, month: int):
    if not 1 <= month <= 12:
        raise ValidationError(f"month must be between 1 and 12, got {month}")
    start = datetime(year, month, 1)
    return start, start + timedelta(days=monthrange(year, month)[1])


class ReportService:
    """Read-only reports"""

    @staticmethod
    def sales_report(
        db: Session,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        group_by: str = "day",
        metal_type: Optional[MetalType] = None
    ) -> dict:
        """
        Sales grouped by day (``YYYY-MM-DD``) or month (``YYYY-MM``).

        Exchange items are reported separately from new-item sales; the
        metal breakdown counts new items only.
        """
        if group_by not in ("day", "month"):
            raise ValidationError("group_by must be 'day' or 'month'")
        key_format = "%Y-%m-%d" if group_by == "day" else "%Y-%m"

        start, end = _day_bounds(start_date, end_date)
        groups: Dict[str, dict] = {}

        for bill in _bills(db, start, end, metal_type):
            key = bill.bill_date.strftime(key_format)
            group = groups.setdefault(key, {
                "period": key,
                "total_bills": 0,
                "total_sales": ZERO,
                "total_items": 0,
                "new_items_value": ZERO,
                "exchange_value": ZERO,
                "metal_wise": {},
                "payment_modes": {},
            })
            group["total_bills"] += 1
            group["total_sales"] += Decimal(bill.total_amount or 0)

            for item in bill.items:
                if item.is_exchange:
                    group["exchange_value"] += Decimal(item.total)
                    continue
                group["total_items"] += 1
                group["new_items_value"] += Decimal(item.total)
                metal = group["metal_wise"].setdefault(
                    item.metal_type.value, {"count": 0, "amount": ZERO}
                )
                metal["count"] += 1
                metal["amount"] += Decimal(item.total)

            mode = bill.payment_mode.value if bill.payment_mode else "cash"
            group["payment_modes"][mode] = group["payment_modes"].get(mode, ZERO) + Decimal(bill.total_amount or 0)

        rows = [groups[k] for k in sorted(groups)]
        total_bills = sum(r["total_bills"] for r in rows)
        total_sales = sum((r["total_sales"] for r in rows), ZERO)

        return {
            "group_by": group_by,
            "periods": [_floats(r) for r in rows],
            "summary": {
                "total_bills": total_bills,
                "total_sales": float(total_sales),
                "new_items_value": float(sum((r["new_items_value"] for r in rows), ZERO)),
                "exchange_value": float(sum((r["exchange_value"] for r in rows), ZERO)),
                "average_bill_value": float(round(total_sales / total_bills, 2)) if total_bills else 0.0,
            },
        }

    @staticmethod
    def gst_report(db: Session, year: Optional[int] = None, month: Optional[int] = None) -> dict:
        """GST collected in a calendar month, taken from the amounts entered on each bill."""
        today = shop_today()
        year = year or today.year
        month = month or today.month
        start, end = _month_bounds(year, month)

        totals = {"taxable_value": ZERO, "cgst": ZERO, "sgst": ZERO, "igst": ZERO, "total_gst": ZERO}
        bills = []
        for bill in _bills(db, start, end):
            row = {
                "taxable_value": Decimal(bill.subtotal or 0),
                "cgst": Decimal(bill.cgst or 0),
                "sgst": Decimal(bill.sgst or 0),
                "igst": Decimal(bill.igst or 0),
                "total_gst": Decimal(bill.total_gst or 0),
            }
            for name, value in row.items():
                totals[name] += value
            bills.append({
                "bill_number": bill.bill_number,
                "date": bill.bill_date.date().isoformat(),
                "customer_name": bill.customer_name,
                "total": float(bill.total_amount or 0),
                **{name: float(value) for name, value in row.items()},
            })

        return {
            "period": {
                "year": year,
                "month": month,
                "start_date": start.date().isoformat(),
                "end_date": (end - timedelta(days=1)).date().isoformat(),
            },
            "summary": {"total_bills": len(bills), **{k: float(v) for k, v in totals.items()}},
            "bills": bills,
        }

    @staticmethod
    def customer_report(
        db: Session,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        min_purchase: Optional[Decimal] = None,
        max_purchase: Optional[Decimal] = None,
        min_bills: int = 0,
        customer_type: str = "all",
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
        sort_by: str = "total_purchase",
        sort_order: str = "desc",
        today: Optional[date] = None
    ) -> dict:
        """
        Purchase history per customer, keyed by phone number.

        Customers are segmented by bill count and average bill value:
        ``premium`` averages above ``PREMIUM_AVERAGE_BILL``, otherwise more
        than one bill is ``regular`` and a single bill is ``new``. The
        ``customer_type`` filter checks each definition on its own (see
        ``matches_customer_type``). Summary and segment figures cover every
        matching customer, not just the page.
        """
        if customer_type not in CUSTOMER_TYPES:
            raise ValidationError(f"customer_type must be one of {', '.join(CUSTOMER_TYPES)}")
        sort_key = CUSTOMER_SORT_KEYS.get(sort_by)
        if sort_key is None:
            raise ValidationError(f"Cannot sort customers by '{sort_by}'")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'")
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        start, end = _day_bounds(start_date, end_date)
        today = today or shop_today()

        customers: Dict[str, dict] = {}
        for bill in _bills(db, start, end):
            customer = customers.setdefault(bill.customer_phone, {
                "phone": bill.customer_phone,
                "name": bill.customer_name,
                "address": bill.customer_address,
                "total_bills": 0,
                "total_purchase": ZERO,
                "first_purchase": bill.bill_date,
                "last_purchase": bill.bill_date,
                "exchange_count": 0,
                "exchange_value": ZERO,
            })
            customer["total_bills"] += 1
            customer["total_purchase"] += Decimal(bill.total_amount or 0)
            customer["address"] = customer["address"] or bill.customer_address
            customer["last_purchase"] = max(customer["last_purchase"], bill.bill_date)
            if bill.has_exchange:
                customer["exchange_count"] += 1
                customer["exchange_value"] += Decimal(bill.exchange_value or 0)

        needle = (search or "").strip().lower()
        rows = []
        for customer in customers.values():
            customer["average_bill_value"] = (customer["total_purchase"] / customer["total_bills"]).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
            customer["segment"] = customer_segment(customer["total_bills"], customer["average_bill_value"])

            if min_purchase is not None and customer["total_purchase"] < Decimal(str(min_purchase)):
                continue
            if max_purchase is not None and customer["total_purchase"] > Decimal(str(max_purchase)):
                continue
            if customer["total_bills"] < (min_bills or 0):
                continue
            if not matches_customer_type(customer_type, customer["total_bills"], customer["average_bill_value"]):
                continue
            if needle and needle not in (customer["name"] or "").lower() and needle not in customer["phone"].lower():
                continue
            rows.append(customer)

        rows.sort(key=lambda c: (c[sort_key] or "").lower() if sort_key == "name" else c[sort_key],
                  reverse=sort_order == "desc")

        segments = {name: {"count": 0, "total": ZERO} for name in ("premium", "regular", "new")}
        for customer in rows:
            segments[customer["segment"]]["count"] += 1
            segments[customer["segment"]]["total"] += customer["total_purchase"]

        total = len(rows)
        total_revenue = sum((c["total_purchase"] for c in rows), ZERO)
        offset = (page - 1) * limit

        return {
            "customers": [_customer_row(c, today) for c in rows[offset:offset + limit]],
            "segments": {
                name: {
                    "count": s["count"],
                    "total": float(s["total"]),
                    "average_value": float(round(s["total"] / s["count"], 2)) if s["count"] else 0.0,
                }
                for name, s in segments.items()
            },
            "summary": {
                "total_customers": total,
                "total_revenue": float(total_revenue),
                "average_customer_value": float(round(total_revenue / total, 2)) if total else 0.0,
            },
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    @staticmethod
    def overview(db: Session, today: Optional[date] = None) -> dict:
        today = today or shop_today()
        day_start = datetime.combine(today, time.min)
        month_start, month_end = _month_bounds(today.year, today.month)

        today_bills = _bills(db, day_start, day_start + timedelta(days=1))
        month_bills = _bills(db, month_start, month_end)
        unsynced = db.query(Bill).filter(Bill.stock_synced == False).count()  # noqa: E712
        low_stock = db.query(StockRecord).filter(
            StockRecord.is_low_stock == True,  # noqa: E712
            StockRecord.is_active == True  # noqa: E712
        ).count()

        def _sum(bills):
            return float(sum((Decimal(b.total_amount or 0) for b in bills), ZERO))

        return {
            "today": {"bills": len(today_bills), "sales": _sum(today_bills)},
            "month": {
                "bills": len(month_bills),
                "sales": _sum(month_bills),
                "exchange_bills": sum(1 for b in month_bills if b.has_exchange),
            },
            "low_stock_items": low_stock,
            "stock": StockService.totals(db),
            "bills_pending_stock_sync": unsynced,
        }


def _floats(group: dict) -> dict:
    return {
        **group,
        "total_sales": float(group["total_sales"]),
        "new_items_value": float(group["new_items_value"]),
        "exchange_value": float(group["exchange_value"]),
        "metal_wise": {k: {"count": v["count"], "amount": float(v["amount"])}
                       for k, v in group["metal_wise"].items()},
        "payment_modes": {k: float(v) for k, v in group["payment_modes"].items()},
    }


def customer_segment(total_bills: int, average_bill_value: Decimal) -> str:
    if average_bill_value > PREMIUM_AVERAGE_BILL:
        return "premium"
    if total_bills > 1:
        return "regular"
    return "new"


def matches_customer_type(customer_type: str, total_bills: int, average_bill_value: Decimal) -> bool:
    """Filter semantics: a single large bill counts as both new and premium."""
    if customer_type == "new":
        return total_bills == 1
    if customer_type == "regular":
        return total_bills > 1 and average_bill_value <= PREMIUM_AVERAGE_BILL
    if customer_type == "premium":
        return average_bill_value > PREMIUM_AVERAGE_BILL
    return True


def _customer_row(customer: dict, today: date) -> dict:
    first, last = customer["first_purchase"], customer["last_purchase"]
    return {
        "phone": customer["phone"],
        "name": customer["name"],
        "address": customer["address"],
        "segment": customer["segment"],
        "total_bills": customer["total_bills"],
        "total_purchase": float(customer["total_purchase"]),
        "average_bill_value": float(customer["average_bill_value"]),
        "exchange_count": customer["exchange_count"],
        "exchange_value": float(customer["exchange_value"]),
        "first_purchase": first.isoformat(),
        "last_purchase": last.isoformat(),
        "customer_since": first.date().isoformat(),
        "last_purchase_date": last.date().isoformat(),
        "days_since_last_purchase": (today - last.date()).days,
    }
