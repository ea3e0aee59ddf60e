"""
Billing API Router
==================
Bill calculation, creation, edits and deletion. Every write keeps the stock
ledger in step through the bill-to-stock synchronizer.
"""

import math
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..models import MetalType, PaymentStatus
from ..schemas import (
    BillCreate, BillListOut, BillOut, BillSummaryOut, BillWriteOut, CalculationOut
)
from ..security import Permission, get_db, require_permission
from ..services.bill_service import BillResult, BillService
from ..services.errors import JewelCoreError
from .errors import http_error

router = APIRouter(prefix="/api/bills", tags=["Bills"])


def _line_dict(line) -> dict:
    return {
        "product_name": line.product_name,
        "metal_type": line.metal_type.value,
        "purity": line.purity,
        "quantity": line.quantity,
        "gross_weight": float(line.gross_weight),
        "less_weight": float(line.less_weight),
        "net_weight": float(line.net_weight),
        "rate": float(line.rate),
        "making_charge_type": line.making_charge_type.value,
        "metal_value": float(line.metal_value),
        "making_charge": float(line.making_charge),
        "other_charges": float(line.other_charges),
        "is_exchange": line.is_exchange,
        "exchange_deduction": float(line.exchange_deduction),
        "total": float(line.total),
    }


def _write_out(result: BillResult) -> BillWriteOut:
    return BillWriteOut(
        bill=BillOut.model_validate(result.bill),
        stock_synced=result.stock_synced,
        stock_error=result.stock_error.detail() if result.stock_error else None,
    )


@router.post("/calculate", response_model=CalculationOut)
async def calculate_bill(
    data: BillCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.BILL_VIEW))
):
    """Price the items and total the bill without saving anything."""
    try:
        lines, totals = BillService.calculate(db, data.to_draft())
    except JewelCoreError as e:
        raise http_error(e)

    return CalculationOut(
        items=[_line_dict(line) for line in lines],
        metal_value=float(totals.metal_value),
        making_value=float(totals.making_value),
        exchange_value=float(totals.exchange_value),
        subtotal=float(totals.subtotal),
        cgst=float(totals.cgst),
        sgst=float(totals.sgst),
        igst=float(totals.igst),
        total_gst=float(totals.total_gst),
        total_amount=float(totals.total_amount),
        amount_in_words=totals.amount_in_words,
        has_exchange=totals.has_exchange,
        exchange_items_count=totals.exchange_items_count,
        new_items_count=totals.new_items_count,
    )


@router.post("", response_model=BillWriteOut, status_code=201)
async def create_bill(
    data: BillCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.BILL_CREATE))
):
    """
    Create a bill and apply it to stock.

    If the stock update fails the bill is still saved: the response carries
    ``stock_synced: false`` and the error, and
    ``POST /api/bills/{id}/resync-stock`` finishes the job.
    """
    try:
        result = BillService.create_bill(db, data.to_draft(), current_user)
    except JewelCoreError as e:
        raise http_error(e)
    return _write_out(result)


@router.get("", response_model=BillListOut)
async def list_bills(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    metal_type: Optional[MetalType] = None,
    payment_status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.BILL_VIEW))
):
    bills, total = BillService.list_bills(
        db, start_date, end_date, search, metal_type, payment_status, page, limit
    )
    return BillListOut(
        bills=[BillSummaryOut.model_validate(b) for b in bills],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/daily-report")
async def daily_report(
    day: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.REPORT_VIEW))
):
    return BillService.daily_report(db, day)


@router.get("/by-number", response_model=BillOut)
async def get_bill_by_number(
    number: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.BILL_VIEW))
):
    """Look up a bill by its number (``SMJ/191026/001``)."""
    try:
        return BillService.get_by_number(db, number)
    except JewelCoreError as e:
        raise http_error(e)


@router.get("/{bill_id}", response_model=BillOut)
async def get_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.BILL_VIEW))
):
    try:
        return BillService.get_bill(db, bill_id)
    except JewelCoreError as e:
        raise http_error(e)


@router.put("/{bill_id}", response_model=BillWriteOut)
async def update_bill(
    bill_id: int,
    data: BillCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.BILL_UPDATE))
):
    """
    Replace the bill's items.

    The old items are taken back into stock before the new ones are applied.
    A 409 with ``manual_review_required`` means the ledger and the bill
    disagree and need a look.
    """
    try:
        result = BillService.update_bill(db, bill_id, data.to_draft(), current_user)
    except JewelCoreError as e:
        raise http_error(e)
    return _write_out(result)


@router.delete("/{bill_id}")
async def delete_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.BILL_DELETE))
):
    try:
        number = BillService.delete_bill(db, bill_id, current_user)
    except JewelCoreError as e:
        raise http_error(e)
    return {"success": True, "message": f"Bill {number} deleted", "bill_number": number}


@router.post("/{bill_id}/resync-stock", response_model=BillWriteOut)
async def resync_stock(
    bill_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.BILL_UPDATE))
):
    """Apply items of a saved bill that never reached the stock ledger."""
    try:
        bill = BillService.resync_stock(db, bill_id, current_user)
    except JewelCoreError as e:
        raise http_error(e)
    return _write_out(BillResult(bill=bill))
