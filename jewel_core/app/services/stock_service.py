"""
Jewellery Stock Ledger Service
==============================
Running balances per SKU (metal type, purity, product name), changed only by
ledger transitions:

- in          quantity += q, weight += w
- out         quantity = max(0, quantity - q), weight = max(0, weight - w)
- adjustment  balances set to absolute targets (physical count)

Every transition appends exactly one StockTransaction carrying the delta
actually applied, the requested amount and before/after snapshots. The low
stock flag is recomputed after every transition.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_low_stock_threshold
from ..models import (
    ItemUnit, MetalType, StockRecord, StockTransaction, TransactionType
)
from .errors import (
    InvalidOperationError, StockNotFoundError, StockWriteError, ValidationError
)
from .pricing import to_decimal, weight as to_weight

logger = logging.getLogger(__name__)


def _quantity(value, name: str = "quantity") -> int:
    if value is None:
        return 0
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a whole number, got {value!r}")
    if qty != to_decimal(value, name):
        raise ValidationError(f"{name} must be a whole number, got {value!r}")
    return qty


# =============================================================================
# LEDGER TRANSITIONS
# =============================================================================

class StockLedger:
    """Transitions and lookups for stock records"""

    @staticmethod
    def find(
        db: Session,
        metal_type: MetalType,
        purity: str,
        product_name: str,
        for_update: bool = False
    ) -> Optional[StockRecord]:
        query = db.query(StockRecord).filter(
            StockRecord.metal_type == MetalType(metal_type),
            StockRecord.purity == purity,
            StockRecord.product_name == product_name
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def lock(db: Session, stock_id: int) -> StockRecord:
        """Load a record for mutation, refreshing any stale in-session copy."""
        record = db.query(StockRecord).filter(
            StockRecord.id == stock_id
        ).with_for_update().populate_existing().first()

        if not record:
            raise StockNotFoundError(f"Stock item {stock_id} not found")
        return record

    @staticmethod
    def get_or_create(
        db: Session,
        metal_type: MetalType,
        purity: str,
        product_name: str,
        actor: Optional[str] = None,
        unit: ItemUnit = ItemUnit.PIECE
    ) -> Tuple[StockRecord, bool]:
        """
        Return the SKU's record, creating it with zero balances if absent.

        A concurrent request that inserts the same SKU first wins; the insert
        is undone to a savepoint and the winner's row is returned instead.

        Returns:
            Tuple of (record, created)

        Raises:
            StockWriteError: if the SKU still cannot be read after the conflict
        """
        record = StockLedger.find(db, metal_type, purity, product_name, for_update=True)
        if record:
            return record, False

        record = StockRecord(
            metal_type=MetalType(metal_type),
            purity=purity,
            product_name=product_name,
            unit=unit or ItemUnit.PIECE,
            quantity=0,
            weight=Decimal("0"),
            low_stock_threshold=get_low_stock_threshold(),
            created_by=actor,
        )
        record.refresh_low_stock()
        try:
            with db.begin_nested():
                db.add(record)
                db.flush()
        except IntegrityError as e:
            existing = StockLedger.find(db, metal_type, purity, product_name, for_update=True)
            if existing:
                logger.info("Stock item %s was created by another request; using it", existing.sku_label)
                return existing, False
            raise StockWriteError(
                f"Stock item {record.sku_label} was created concurrently; retry",
                skus=[record.sku_label]
            ) from e

        logger.info("Created stock item %s", record.sku_label)
        return record, True

    @staticmethod
    def _append(
        record: StockRecord,
        transaction_type: TransactionType,
        quantity_before: int,
        weight_before: Decimal,
        requested_quantity: int,
        requested_weight: Decimal,
        actor: Optional[str],
        bill_number: Optional[str],
        bill_item_id: Optional[int],
        notes: Optional[str],
        reversal_of: Optional[StockTransaction] = None
    ) -> StockTransaction:
        record.refresh_low_stock()
        record.updated_at = datetime.utcnow()

        txn = StockTransaction(
            transaction_type=transaction_type,
            quantity_change=record.quantity - quantity_before,
            weight_change=Decimal(record.weight) - weight_before,
            requested_quantity=requested_quantity,
            requested_weight=requested_weight,
            quantity_before=quantity_before,
            quantity_after=record.quantity,
            weight_before=weight_before,
            weight_after=Decimal(record.weight),
            bill_number=bill_number,
            bill_item_id=bill_item_id,
            notes=notes,
            actor=actor,
            reversal_of_id=reversal_of.id if reversal_of is not None else None,
            created_at=datetime.utcnow(),
        )
        record.transactions.append(txn)
        return txn

    @staticmethod
    def apply_in(
        record: StockRecord,
        quantity,
        weight,
        actor: Optional[str] = None,
        bill_number: Optional[str] = None,
        bill_item_id: Optional[int] = None,
        notes: Optional[str] = None,
        reversal_of: Optional[StockTransaction] = None
    ) -> StockTransaction:
        qty = _quantity(quantity)
        wt = to_weight(weight)
        if qty < 0 or wt < 0:
            raise ValidationError("Stock in quantity and weight cannot be negative")

        quantity_before = record.quantity or 0
        weight_before = Decimal(record.weight or 0)

        record.quantity = quantity_before + qty
        record.weight = weight_before + wt

        return StockLedger._append(
            record, TransactionType.IN, quantity_before, weight_before, qty, wt,
            actor, bill_number, bill_item_id, notes, reversal_of
        )

    @staticmethod
    def apply_out(
        record: StockRecord,
        quantity,
        weight,
        actor: Optional[str] = None,
        bill_number: Optional[str] = None,
        bill_item_id: Optional[int] = None,
        notes: Optional[str] = None,
        reversal_of: Optional[StockTransaction] = None
    ) -> StockTransaction:
        """Remove stock. Balances are clamped at zero; the transaction records what was really removed."""
        qty = _quantity(quantity)
        wt = to_weight(weight)
        if qty < 0 or wt < 0:
            raise ValidationError("Stock out quantity and weight cannot be negative")

        quantity_before = record.quantity or 0
        weight_before = Decimal(record.weight or 0)

        record.quantity = max(0, quantity_before - qty)
        record.weight = max(Decimal("0"), weight_before - wt)

        txn = StockLedger._append(
            record, TransactionType.OUT, quantity_before, weight_before, qty, wt,
            actor, bill_number, bill_item_id, notes, reversal_of
        )
        if txn.is_clamped:
            logger.warning(
                "Stock out for %s clamped at zero: requested %s pcs / %s g, applied %s pcs / %s g",
                record.sku_label, qty, wt, -txn.quantity_change, -txn.weight_change
            )
        return txn

    @staticmethod
    def apply_adjustment(
        record: StockRecord,
        target_quantity=None,
        target_weight=None,
        actor: Optional[str] = None,
        notes: Optional[str] = None
    ) -> StockTransaction:
        """Set balances to absolute values; None keeps the current balance."""
        quantity_before = record.quantity or 0
        weight_before = Decimal(record.weight or 0)

        new_quantity = quantity_before if target_quantity is None else _quantity(target_quantity)
        new_weight = weight_before if target_weight is None else to_weight(target_weight)
        if new_quantity < 0 or new_weight < 0:
            raise ValidationError("Adjusted quantity and weight cannot be negative")

        record.quantity = new_quantity
        record.weight = new_weight

        return StockLedger._append(
            record, TransactionType.ADJUSTMENT, quantity_before, weight_before,
            new_quantity - quantity_before, new_weight - weight_before,
            actor, None, None, notes
        )


# =============================================================================
# STOCK MANAGEMENT
# =============================================================================

class StockService:
    """Manual stock operations behind the stock management screens"""

    @staticmethod
    def create_item(
        db: Session,
        metal_type: MetalType,
        purity: str,
        product_name: str,
        actor: str,
        quantity: int = 0,
        weight=Decimal("0"),
        unit: ItemUnit = ItemUnit.PIECE,
        cost_price=None,
        selling_reference_price=None,
        low_stock_threshold: Optional[int] = None,
        notes: Optional[str] = None
    ) -> StockRecord:
        if StockLedger.find(db, metal_type, purity, product_name):
            raise InvalidOperationError(
                "Stock item already exists for this metal, purity, and product"
            )

        record, _ = StockLedger.get_or_create(db, metal_type, purity, product_name, actor, unit)
        record.cost_price = cost_price
        record.selling_reference_price = selling_reference_price
        if low_stock_threshold is not None:
            record.low_stock_threshold = low_stock_threshold
        record.notes = notes

        if _quantity(quantity) or to_weight(weight):
            StockLedger.apply_in(record, quantity, weight, actor, notes="Initial stock entry")
        record.refresh_low_stock()
        return record

    @staticmethod
    def get_item(db: Session, stock_id: int) -> StockRecord:
        record = db.query(StockRecord).filter(StockRecord.id == stock_id).first()
        if not record:
            raise StockNotFoundError(f"Stock item {stock_id} not found")
        return record

    @staticmethod
    def list_items(
        db: Session,
        metal_type: Optional[MetalType] = None,
        purity: Optional[str] = None,
        low_stock_only: bool = False,
        offset: int = 0,
        limit: int = 100
    ) -> Tuple[List[StockRecord], int]:
        query = db.query(StockRecord)
        if metal_type:
            query = query.filter(StockRecord.metal_type == MetalType(metal_type))
        if purity:
            query = query.filter(StockRecord.purity == purity)
        if low_stock_only:
            query = query.filter(StockRecord.is_low_stock == True)  # noqa: E712

        total = query.count()
        items = query.order_by(
            StockRecord.metal_type, StockRecord.purity, StockRecord.product_name
        ).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def update_item(db: Session, stock_id: int, **fields) -> StockRecord:
        """
        Update reference data. Balances are not editable here; they change
        only through in/out/adjustment transitions.
        """
        record = StockLedger.lock(db, stock_id)
        for name in ("cost_price", "selling_reference_price", "low_stock_threshold", "notes", "is_active"):
            if fields.get(name) is not None:
                setattr(record, name, fields[name])
        record.refresh_low_stock()
        record.updated_at = datetime.utcnow()
        return record

    @staticmethod
    def delete_item(db: Session, stock_id: int) -> None:
        record = StockLedger.lock(db, stock_id)
        if (record.quantity or 0) > 0 or record.transactions:
            raise InvalidOperationError(
                "Cannot delete stock item with existing quantity or transactions"
            )
        db.delete(record)

    @staticmethod
    def adjust(
        db: Session,
        stock_id: int,
        adjustment_type: TransactionType,
        actor: str,
        quantity=None,
        weight=None,
        cost_price=None,
        selling_price=None,
        notes: Optional[str] = None
    ) -> Tuple[StockTransaction, StockRecord]:
        if quantity is None and weight is None:
            raise ValidationError("Adjustment type and quantity/weight are required")

        record = StockLedger.lock(db, stock_id)
        adjustment_type = TransactionType(adjustment_type)
        notes = notes or "Manual adjustment"

        if adjustment_type == TransactionType.IN:
            txn = StockLedger.apply_in(record, quantity, weight, actor, notes=notes)
        elif adjustment_type == TransactionType.OUT:
            txn = StockLedger.apply_out(record, quantity, weight, actor, notes=notes)
        else:
            txn = StockLedger.apply_adjustment(record, quantity, weight, actor, notes=notes)

        if cost_price is not None:
            record.cost_price = cost_price
        if selling_price is not None:
            record.selling_reference_price = selling_price
        return txn, record

    @staticmethod
    def reconcile(
        db: Session,
        stock_id: int,
        actor: str,
        actual_quantity=None,
        actual_weight=None,
        notes: Optional[str] = None
    ) -> dict:
        """Bring system balances in line with a physical count."""
        if actual_quantity is None and actual_weight is None:
            raise ValidationError("Actual quantity or weight is required")

        record = StockLedger.lock(db, stock_id)
        txn = StockLedger.apply_adjustment(
            record, actual_quantity, actual_weight, actor,
            notes=f"Reconciliation: {notes or 'Physical count adjustment'}"
        )
        return {
            "previous_quantity": txn.quantity_before,
            "previous_weight": float(txn.weight_before),
            "new_quantity": txn.quantity_after,
            "new_weight": float(txn.weight_after),
            "quantity_difference": txn.quantity_change,
            "weight_difference": float(txn.weight_change),
        }

    @staticmethod
    def history(db: Session, stock_id: int) -> Tuple[StockRecord, List[StockTransaction]]:
        record = StockService.get_item(db, stock_id)
        transactions = db.query(StockTransaction).filter(
            StockTransaction.stock_id == stock_id
        ).order_by(
            StockTransaction.created_at.desc(), StockTransaction.id.desc()
        ).all()
        return record, transactions

    @staticmethod
    def low_stock_alerts(db: Session) -> dict:
        low_items = db.query(StockRecord).filter(
            StockRecord.is_low_stock == True,  # noqa: E712
            StockRecord.is_active == True  # noqa: E712
        ).order_by(StockRecord.quantity.asc()).all()

        out_of_stock = [r for r in low_items if (r.quantity or 0) == 0]
        low_stock = [r for r in low_items if (r.quantity or 0) > 0]

        def _entry(record: StockRecord) -> dict:
            return {
                "id": record.id,
                "product": record.product_name,
                "metal": f"{record.metal_type.value} {record.purity}",
                "quantity": record.quantity,
                "weight": float(record.weight or 0),
                "threshold": record.low_stock_threshold,
            }

        return {
            "out_of_stock": {"count": len(out_of_stock), "items": [_entry(r) for r in out_of_stock]},
            "low_stock": {"count": len(low_stock), "items": [_entry(r) for r in low_stock]},
            "summary": {
                "total_low_stock": len(low_items),
                "total_out_of_stock": len(out_of_stock),
            },
        }

    @staticmethod
    def valuation(db: Session) -> dict:
        """Stock value at cost and at selling reference price (both per gram)."""
        records = db.query(StockRecord).all()

        total_quantity = 0
        total_weight = Decimal("0")
        cost_value = Decimal("0")
        selling_value = Decimal("0")
        breakdown = {}

        for record in records:
            record_weight = Decimal(record.weight or 0)
            total_quantity += record.quantity or 0
            total_weight += record_weight

            item_selling = Decimal("0")
            if record.cost_price:
                cost_value += record_weight * Decimal(record.cost_price)
            if record.selling_reference_price:
                item_selling = record_weight * Decimal(record.selling_reference_price)
                selling_value += item_selling

            key = (record.metal_type.value, record.purity)
            entry = breakdown.setdefault(key, {
                "metal_type": record.metal_type.value,
                "purity": record.purity,
                "items": 0,
                "quantity": 0,
                "weight": Decimal("0"),
                "selling_value": Decimal("0"),
            })
            entry["items"] += 1
            entry["quantity"] += record.quantity or 0
            entry["weight"] += record_weight
            entry["selling_value"] += item_selling

        margin = ((selling_value - cost_value) / cost_value * 100) if cost_value > 0 else Decimal("0")

        rows = sorted(breakdown.values(), key=lambda e: e["selling_value"], reverse=True)
        return {
            "total_items": len(records),
            "total_quantity": total_quantity,
            "total_weight": float(total_weight),
            "cost_value": float(round(cost_value, 2)),
            "selling_value": float(round(selling_value, 2)),
            "profit_margin": float(round(margin, 2)),
            "metal_breakdown": [
                {**row, "weight": float(row["weight"]), "selling_value": float(round(row["selling_value"], 2))}
                for row in rows
            ],
        }

    @staticmethod
    def totals(db: Session) -> dict:
        row = db.query(
            func.count(StockRecord.id),
            func.sum(StockRecord.quantity),
            func.sum(StockRecord.weight),
        ).one()
        low = db.query(func.count(StockRecord.id)).filter(StockRecord.is_low_stock == True).scalar()  # noqa: E712
        return {
            "items": row[0] or 0,
            "quantity": int(row[1] or 0),
            "weight": float(row[2] or 0),
            "low_stock": low or 0,
        }


def commit_stock(db: Session, skus=(), bill_number: Optional[str] = None) -> None:
    """Commit pending ledger changes, turning store failures into StockWriteError."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Stock write failed for %s: %s", ", ".join(skus) or "stock", e)
        raise StockWriteError(
            f"Stock update could not be saved: {e.__class__.__name__}",
            bill_number=bill_number,
            skus=skus
        ) from e
