from decimal import Decimal

import pytest

from jewel_core.app.models import MetalType, StockTransaction, TransactionType
from jewel_core.app.services.errors import (
    InvalidOperationError, StockWriteError, ValidationError
)
from jewel_core.app.services.stock_service import StockLedger, StockService, commit_stock


def _record(db, quantity=0, weight="0"):
    record = StockService.create_item(
        db, MetalType.GOLD, "22K", "Ring", "admin", quantity=quantity, weight=Decimal(weight)
    )
    db.commit()
    return record


def test_new_sku_starts_empty_and_low(db):
    record, created = StockLedger.get_or_create(db, MetalType.SILVER, "925", "Anklet")
    assert created
    assert record.quantity == 0
    assert record.weight == Decimal("0")
    assert record.is_low_stock

    again, created = StockLedger.get_or_create(db, MetalType.SILVER, "925", "Anklet")
    assert again is record
    assert not created


def test_stock_in_updates_balances_and_low_flag(db):
    record = _record(db)
    txn = StockLedger.apply_in(record, 3, "30", "admin")
    assert (record.quantity, record.weight) == (3, Decimal("30.000"))
    assert record.is_low_stock
    assert txn.quantity_change == 3
    assert txn.transaction_type == TransactionType.IN

    StockLedger.apply_in(record, 5, "50", "admin")
    assert record.quantity == 8
    assert not record.is_low_stock


def test_low_stock_threshold_is_inclusive(db):
    record = _record(db, quantity=5, weight="50")
    assert record.is_low_stock
    StockLedger.apply_in(record, 1, "10")
    assert not record.is_low_stock


def test_stock_out_clamps_at_zero(db):
    record = _record(db, quantity=2, weight="20")
    txn = StockLedger.apply_out(record, 5, "50", "admin")

    assert (record.quantity, record.weight) == (0, Decimal("0"))
    assert txn.quantity_change == -2
    assert txn.weight_change == Decimal("-20.000")
    assert txn.requested_quantity == 5
    assert txn.requested_weight == Decimal("50.000")
    assert txn.is_clamped


def test_stock_out_within_balance_is_not_clamped(db):
    record = _record(db, quantity=4, weight="40")
    txn = StockLedger.apply_out(record, 1, "10")
    assert record.quantity == 3
    assert not txn.is_clamped


def test_adjustment_records_difference(db):
    record = _record(db, quantity=8, weight="80")
    txn = StockLedger.apply_adjustment(record, target_quantity=6, actor="admin", notes="count")

    assert record.quantity == 6
    assert record.weight == Decimal("80.000")
    assert txn.quantity_change == -2
    assert txn.weight_change == Decimal("0")
    assert (txn.quantity_before, txn.quantity_after) == (8, 6)


@pytest.mark.parametrize("quantity, weight", [(-1, "0"), (0, "-2"), ("1.5", "0")])
def test_invalid_stock_in_rejected(db, quantity, weight):
    record = _record(db)
    with pytest.raises(ValidationError):
        StockLedger.apply_in(record, quantity, weight)


def test_every_transition_appends_one_transaction(db):
    record = _record(db, quantity=10, weight="100")
    StockLedger.apply_out(record, 1, "10")
    StockLedger.apply_adjustment(record, target_weight="95")
    db.commit()

    txns = db.query(StockTransaction).filter(StockTransaction.stock_id == record.id).all()
    assert [t.transaction_type for t in txns] == [
        TransactionType.IN, TransactionType.OUT, TransactionType.ADJUSTMENT
    ]


def test_concurrent_writer_loses_instead_of_overwriting(db, other_db):
    record = _record(db, quantity=10, weight="100")
    stale = StockLedger.lock(other_db, record.id)

    StockLedger.apply_out(StockLedger.lock(db, record.id), 2, "20", "counter-1")
    commit_stock(db, [record.sku_label])

    StockLedger.apply_out(stale, 3, "30", "counter-2")
    with pytest.raises(StockWriteError) as exc:
        commit_stock(other_db, [stale.sku_label])
    assert exc.value.skus == ["Gold 22K Ring"]

    db.expire_all()
    assert StockService.get_item(db, record.id).quantity == 8


def test_sku_created_concurrently_is_reused(db, other_db, monkeypatch):
    winner, created = StockLedger.get_or_create(other_db, MetalType.SILVER, "925", "Anklet")
    assert created
    other_db.commit()

    real_find = StockLedger.find
    lookups = []

    def find_after_race(session, *args, **kwargs):
        # the first lookup ran before the other request committed
        lookups.append(1)
        if len(lookups) == 1:
            return None
        return real_find(session, *args, **kwargs)

    monkeypatch.setattr(StockLedger, "find", staticmethod(find_after_race))
    record, created = StockLedger.get_or_create(db, MetalType.SILVER, "925", "Anklet")

    assert not created
    assert record.id == winner.id
    assert len(lookups) == 2

    StockLedger.apply_in(record, 1, "30", "counter-2")
    commit_stock(db, [record.sku_label])
    db.expire_all()
    assert StockService.get_item(db, winner.id).quantity == 1


def test_duplicate_sku_rejected(db):
    _record(db)
    with pytest.raises(InvalidOperationError):
        StockService.create_item(db, MetalType.GOLD, "22K", "Ring", "admin")


def test_delete_refused_with_history(db):
    record = _record(db, quantity=1, weight="5")
    with pytest.raises(InvalidOperationError):
        StockService.delete_item(db, record.id)


def test_reconcile_reports_differences(db):
    record = _record(db, quantity=10, weight="100")
    result = StockService.reconcile(db, record.id, "admin", actual_quantity=9, actual_weight="92.5")
    assert result["quantity_difference"] == -1
    assert result["weight_difference"] == -7.5
    assert result["new_weight"] == 92.5


def test_alerts_and_valuation(db):
    record = _record(db, quantity=2, weight="20")
    record.cost_price = Decimal("5000")
    record.selling_reference_price = Decimal("6000")
    StockService.create_item(db, MetalType.SILVER, "925", "Anklet", "admin")
    db.commit()

    alerts = StockService.low_stock_alerts(db)
    assert alerts["out_of_stock"]["count"] == 1
    assert alerts["low_stock"]["count"] == 1

    valuation = StockService.valuation(db)
    assert valuation["cost_value"] == 100000.0
    assert valuation["selling_value"] == 120000.0
    assert valuation["profit_margin"] == 20.0
