"""
Bill-to-stock synchronizer.

A sale item takes stock out, an exchange item brings old metal in. Each
application is one ledger transaction tagged with the bill number and the
bill item id, so a revert can undo exactly what was applied, clamping
included, and a re-run only applies items that are not applied yet.
"""

import logging
from typing import List, Optional

from sqlalchemy import exists
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from ..models import Bill, BillItem, StockTransaction
from .errors import StockWriteError
from .stock_service import StockLedger

logger = logging.getLogger(__name__)


def sku_label(item: BillItem) -> str:
    return f"{item.metal_type.value} {item.purity} {item.product_name}"


def active_application(db: Session, bill: Bill, item: BillItem) -> Optional[StockTransaction]:
    """The transaction that applied ``item`` to stock and has not been reversed yet."""
    reversal = aliased(StockTransaction)
    return db.query(StockTransaction).filter(
        StockTransaction.bill_number == bill.bill_number,
        StockTransaction.bill_item_id == item.id,
        StockTransaction.reversal_of_id.is_(None),
        ~exists().where(reversal.reversal_of_id == StockTransaction.id)
    ).order_by(
        StockTransaction.id.desc()
    ).first()


def apply_bill(db: Session, bill: Bill, actor: Optional[str]) -> List[StockTransaction]:
    """
    Apply every not-yet-applied item of a stored bill to the stock ledger.

    Changes are flushed, not committed.

    Raises:
        StockWriteError: if the ledger could not be updated
    """
    transactions = []
    touched = []
    try:
        for item in bill.items:
            touched.append(sku_label(item))
            if active_application(db, bill, item) is not None:
                continue

            record, _ = StockLedger.get_or_create(
                db, item.metal_type, item.purity, item.product_name, actor, item.unit
            )
            if item.is_exchange:
                txn = StockLedger.apply_in(
                    record, item.quantity, item.net_weight, actor,
                    bill_number=bill.bill_number, bill_item_id=item.id,
                    notes=f"Exchange received on bill {bill.bill_number}"
                )
            else:
                txn = StockLedger.apply_out(
                    record, item.quantity, item.net_weight, actor,
                    bill_number=bill.bill_number, bill_item_id=item.id,
                    notes=f"Sold on bill {bill.bill_number}"
                )
            db.flush()
            transactions.append(txn)

        bill.stock_synced = True
        db.flush()
    except StockWriteError as e:
        e.bill_number = bill.bill_number
        e.skus = touched
        raise
    except SQLAlchemyError as e:
        raise StockWriteError(
            f"Stock update failed for bill {bill.bill_number}: {e.__class__.__name__}",
            bill_number=bill.bill_number,
            skus=touched
        ) from e

    logger.info("Applied bill %s to stock (%d transactions)", bill.bill_number, len(transactions))
    return transactions


def revert_bill(db: Session, bill: Bill, actor: Optional[str]) -> List[StockTransaction]:
    """
    Undo the stock effect of a bill: exchange items go back out, sold items
    come back in, each by exactly the amount its transaction applied.
    Items that were never applied are skipped.

    Raises:
        StockWriteError: if the ledger could not be updated
    """
    transactions = []
    touched = []
    try:
        for item in bill.items:
            original = active_application(db, bill, item)
            if original is None:
                continue
            touched.append(sku_label(item))

            record = StockLedger.lock(db, original.stock_id)
            quantity = abs(original.quantity_change)
            weight = abs(original.weight_change)
            notes = f"Reversal of bill {bill.bill_number}"

            if original.quantity_change > 0 or original.weight_change > 0:
                txn = StockLedger.apply_out(
                    record, quantity, weight, actor,
                    bill_number=bill.bill_number, bill_item_id=item.id,
                    notes=notes, reversal_of=original
                )
            else:
                txn = StockLedger.apply_in(
                    record, quantity, weight, actor,
                    bill_number=bill.bill_number, bill_item_id=item.id,
                    notes=notes, reversal_of=original
                )
            db.flush()
            transactions.append(txn)

        bill.stock_synced = False
        db.flush()
    except SQLAlchemyError as e:
        raise StockWriteError(
            f"Stock reversal failed for bill {bill.bill_number}: {e.__class__.__name__}",
            bill_number=bill.bill_number,
            skus=touched
        ) from e

    logger.info("Reverted bill %s from stock (%d transactions)", bill.bill_number, len(transactions))
    return transactions
