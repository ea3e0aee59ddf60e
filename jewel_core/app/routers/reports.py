from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..models import MetalType
from ..security import Permission, get_db, require_permission
from ..services.errors import JewelCoreError
from ..services.report_service import ReportService
from .errors import http_error

router = APIRouter(prefix="/api/reports", tags=["Reports"])


@router.get("/overview")
async def dashboard_overview(
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.REPORT_VIEW))
):
    return ReportService.overview(db)


@router.get("/sales")
async def sales_report(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    group_by: str = Query("day", pattern="^(day|month)$"),
    metal_type: Optional[MetalType] = None,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.REPORT_VIEW))
):
    try:
        return ReportService.sales_report(db, start_date, end_date, group_by, metal_type)
    except JewelCoreError as e:
        raise http_error(e)


@router.get("/gst")
async def gst_report(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.REPORT_VIEW))
):
    try:
        return ReportService.gst_report(db, year, month)
    except JewelCoreError as e:
        raise http_error(e)


@router.get("/customers")
async def customer_report(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    min_purchase: Optional[Decimal] = Query(None, ge=0),
    max_purchase: Optional[Decimal] = Query(None, ge=0),
    min_bills: int = Query(0, ge=0),
    customer_type: str = Query("all", pattern="^(all|new|regular|premium)$"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    sort_by: str = "total_purchase",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.REPORT_VIEW))
):
    try:
        return ReportService.customer_report(
            db, start_date, end_date, min_purchase, max_purchase, min_bills,
            customer_type, search, page, limit, sort_by, sort_order
        )
    except JewelCoreError as e:
        raise http_error(e)
