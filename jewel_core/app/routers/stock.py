"""
Stock API Router
================
Stock register per SKU (metal type, purity, product name):
- Balances change only through in/out/adjustment transitions
- Every transition is kept in the SKU's transaction history
- Low-stock alerts and valuation
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, validator
from sqlalchemy.orm import Session

from ..models import ItemUnit, MetalType, TransactionType
from ..security import Permission, get_db, require_permission
from ..services.errors import JewelCoreError
from ..services.stock_service import StockService, commit_stock
from .errors import http_error

router = APIRouter(prefix="/api/stock", tags=["Stock"])


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class StockCreate(BaseModel):
    product_name: str = Field(..., min_length=1, max_length=200)
    metal_type: MetalType
    purity: str = Field(..., min_length=1, max_length=30)
    unit: ItemUnit = ItemUnit.PIECE
    quantity: int = Field(0, ge=0)
    weight: Decimal = Field(Decimal("0"), ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    selling_reference_price: Optional[Decimal] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None

    @validator('product_name', 'purity')
    def strip_text(cls, v):
        return v.strip()


class StockUpdate(BaseModel):
    """Reference data only; balances change through /adjust and /reconcile"""
    cost_price: Optional[Decimal] = Field(None, ge=0)
    selling_reference_price: Optional[Decimal] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class StockAdjustRequest(BaseModel):
    adjustment_type: TransactionType
    quantity: Optional[int] = Field(None, ge=0)
    weight: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class ReconcileRequest(BaseModel):
    """Physical count for a SKU"""
    actual_quantity: Optional[int] = Field(None, ge=0)
    actual_weight: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class StockOut(BaseModel):
    id: int
    product_name: str
    metal_type: MetalType
    purity: str
    unit: ItemUnit
    quantity: int
    weight: float
    cost_price: Optional[float]
    selling_reference_price: Optional[float]
    low_stock_threshold: int
    is_low_stock: bool
    is_active: bool
    notes: Optional[str]
    version: int
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class StockTransactionOut(BaseModel):
    id: int
    transaction_type: TransactionType
    quantity_change: int
    weight_change: float
    requested_quantity: int
    requested_weight: float
    quantity_before: int
    quantity_after: int
    weight_before: float
    weight_after: float
    bill_number: Optional[str]
    bill_item_id: Optional[int]
    reversal_of_id: Optional[int]
    notes: Optional[str]
    actor: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class StockListOut(BaseModel):
    items: List[StockOut]
    total: int
    limit: int
    offset: int


class StockHistoryOut(BaseModel):
    stock: StockOut
    transactions: List[StockTransactionOut]


# =============================================================================
# QUERIES
# =============================================================================

@router.get("", response_model=StockListOut)
async def list_stock(
    metal_type: Optional[MetalType] = None,
    purity: Optional[str] = None,
    low_stock_only: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_VIEW))
):
    items, total = StockService.list_items(db, metal_type, purity, low_stock_only, offset, limit)
    return StockListOut(
        items=[StockOut.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/valuation")
async def stock_valuation(
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.REPORT_VIEW))
):
    """Stock value at cost and at selling reference price, per metal and purity."""
    return StockService.valuation(db)


@router.get("/alerts")
async def low_stock_alerts(
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_VIEW))
):
    return StockService.low_stock_alerts(db)


@router.get("/{stock_id}", response_model=StockOut)
async def get_stock_item(
    stock_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_VIEW))
):
    try:
        return StockService.get_item(db, stock_id)
    except JewelCoreError as e:
        raise http_error(e)


@router.get("/{stock_id}/history", response_model=StockHistoryOut)
async def stock_history(
    stock_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_VIEW))
):
    """Transactions for a SKU, newest first."""
    try:
        record, transactions = StockService.history(db, stock_id)
    except JewelCoreError as e:
        raise http_error(e)
    return StockHistoryOut(
        stock=StockOut.model_validate(record),
        transactions=[StockTransactionOut.model_validate(t) for t in transactions],
    )


# =============================================================================
# WRITES
# =============================================================================

@router.post("", response_model=StockOut, status_code=201)
async def create_stock_item(
    data: StockCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_CREATE))
):
    """Register a SKU. Opening stock is recorded as an ``in`` transaction."""
    try:
        record = StockService.create_item(
            db, data.metal_type, data.purity, data.product_name, current_user.username,
            quantity=data.quantity,
            weight=data.weight,
            unit=data.unit,
            cost_price=data.cost_price,
            selling_reference_price=data.selling_reference_price,
            low_stock_threshold=data.low_stock_threshold,
            notes=data.notes,
        )
        commit_stock(db, [record.sku_label])
    except JewelCoreError as e:
        db.rollback()
        raise http_error(e)

    db.refresh(record)
    return record


@router.put("/{stock_id}", response_model=StockOut)
async def update_stock_item(
    stock_id: int,
    data: StockUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_UPDATE))
):
    try:
        record = StockService.update_item(db, stock_id, **data.model_dump(exclude_unset=True))
        commit_stock(db, [record.sku_label])
    except JewelCoreError as e:
        db.rollback()
        raise http_error(e)

    db.refresh(record)
    return record


@router.delete("/{stock_id}")
async def delete_stock_item(
    stock_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_DELETE))
):
    """Only SKUs with zero quantity and no transaction history can be deleted."""
    try:
        StockService.delete_item(db, stock_id)
        commit_stock(db)
    except JewelCoreError as e:
        db.rollback()
        raise http_error(e)
    return {"success": True, "message": "Stock item deleted successfully"}


@router.post("/{stock_id}/adjust")
async def adjust_stock(
    stock_id: int,
    request: StockAdjustRequest,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_ADJUST))
):
    """
    Manual stock movement.

    - in: add the quantity/weight
    - out: remove it (balances never go below zero)
    - adjustment: set the balances to the given values
    """
    try:
        txn, record = StockService.adjust(
            db, stock_id, request.adjustment_type, current_user.username,
            quantity=request.quantity,
            weight=request.weight,
            cost_price=request.cost_price,
            selling_price=request.selling_price,
            notes=request.notes,
        )
        commit_stock(db, [record.sku_label])
    except JewelCoreError as e:
        db.rollback()
        raise http_error(e)

    db.refresh(record)
    return {
        "success": True,
        "message": "Stock adjusted successfully",
        "stock": StockOut.model_validate(record),
        "transaction": StockTransactionOut.model_validate(txn),
    }


@router.post("/{stock_id}/reconcile")
async def reconcile_stock(
    stock_id: int,
    request: ReconcileRequest,
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_ADJUST))
):
    """Bring the system balances in line with a physical count."""
    try:
        result = StockService.reconcile(
            db, stock_id, current_user.username,
            actual_quantity=request.actual_quantity,
            actual_weight=request.actual_weight,
            notes=request.notes,
        )
        commit_stock(db)
    except JewelCoreError as e:
        db.rollback()
        raise http_error(e)
    return {"success": True, "message": "Stock reconciled successfully", "reconciliation": result}
