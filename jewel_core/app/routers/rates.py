"""
Rates API Router
================
Metal rate table read by the pricing engine, with change history and the
exchange (old gold) rate view.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..models import MetalType, RateUnit
from ..security import Permission, get_db, require_permission
from ..services.errors import JewelCoreError
from ..services.rate_service import RateService
from .errors import http_error

router = APIRouter(prefix="/api/rates", tags=["Rates"])


class RateUpsert(BaseModel):
    metal_type: MetalType
    purity: str = Field(..., min_length=1, max_length=30)
    rate: Decimal = Field(..., gt=0)
    unit: Optional[RateUnit] = None
    gst_applicable: Optional[bool] = None


class RateOut(BaseModel):
    id: int
    metal_type: MetalType
    purity: str
    rate: Optional[float]
    unit: RateUnit
    gst_applicable: bool
    is_active: bool
    effective_date: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class RateHistoryOut(BaseModel):
    id: int
    metal_type: MetalType
    purity: str
    old_rate: Optional[float]
    new_rate: float
    unit: RateUnit
    effective_date: datetime
    updated_by: Optional[int]

    class Config:
        from_attributes = True


@router.get("")
async def get_rates(
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.RATE_VIEW))
):
    """All rates as metal -> purity -> rate; unpriced purities are null."""
    return RateService.list_grouped(db)


@router.get("/active", response_model=List[RateOut])
async def get_active_rates(
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.RATE_VIEW))
):
    return RateService.list_active(db)


@router.get("/history", response_model=List[RateHistoryOut])
async def get_rate_history(
    metal_type: Optional[MetalType] = None,
    purity: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.RATE_VIEW))
):
    return RateService.history(db, metal_type, purity, limit)


@router.get("/exchange")
async def get_exchange_rate(
    metal_type: MetalType,
    purity: str,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.RATE_VIEW))
):
    """Rate paid for old metal brought in for exchange."""
    quote = RateService.exchange_quote(db, metal_type, purity)
    if quote is None:
        raise HTTPException(status_code=404, detail=f"Rate not found for {metal_type.value} - {purity}")
    return quote


@router.post("", response_model=RateOut)
async def upsert_rate(
    data: RateUpsert,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.RATE_UPDATE))
):
    """Create or update the rate for a metal and purity."""
    try:
        rate = RateService.upsert_rate(
            db, data.metal_type, data.purity.strip(), data.rate, current_user.id,
            unit=data.unit, gst_applicable=data.gst_applicable
        )
        db.commit()
    except JewelCoreError as e:
        db.rollback()
        raise http_error(e)

    db.refresh(rate)
    return rate


@router.put("/{rate_id}/status", response_model=RateOut)
async def toggle_rate_status(
    rate_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.RATE_UPDATE))
):
    try:
        rate = RateService.toggle_status(db, rate_id)
        db.commit()
    except JewelCoreError as e:
        db.rollback()
        raise http_error(e)

    db.refresh(rate)
    return rate


@router.delete("/{rate_id}")
async def delete_rate(
    rate_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.RATE_UPDATE))
):
    try:
        RateService.delete_rate(db, rate_id)
        db.commit()
    except JewelCoreError as e:
        db.rollback()
        raise http_error(e)
    return {"success": True, "message": "Rate deleted successfully"}
