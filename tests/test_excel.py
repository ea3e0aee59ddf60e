from decimal import Decimal
from io import BytesIO

import pandas as pd

from jewel_core.app.excel import _find_column_mapping, import_stock_frame
from jewel_core.app.models import MetalType, Rate, StockTransaction, TransactionType
from jewel_core.app.seed import seed_admin, seed_rate_grid
from jewel_core.app.services.stock_service import StockLedger


def test_column_mapping_detects_common_headers():
    mapping = _find_column_mapping(["Item Name", "Metal", "Karat", "Qty", "Wt", "Remarks"])
    assert mapping == {
        "Item Name": "product_name",
        "Metal": "metal_type",
        "Karat": "purity",
        "Qty": "quantity",
        "Wt": "weight",
        "Remarks": "notes",
    }


def test_import_creates_and_adjusts(db):
    first = pd.DataFrame([
        {"Product Name": "Ring", "Metal Type": "gold", "Purity": "22K", "Qty": 4, "Weight (g)": 18.5},
        {"Product Name": "Anklet", "Metal Type": "Silver", "Purity": 925.0, "Qty": 2, "Weight (g)": 60},
    ])
    result = import_stock_frame(db, first, "admin")
    assert (result["created"], result["updated"], result["failed"]) == (2, 0, 0)

    anklet = StockLedger.find(db, MetalType.SILVER, "925", "Anklet")
    assert anklet.quantity == 2

    second = pd.DataFrame([
        {"Product Name": "Ring", "Metal Type": "Gold", "Purity": "22K", "Qty": 3, "Weight (g)": None},
    ])
    result = import_stock_frame(db, second, "admin")
    assert result["updated"] == 1

    ring = StockLedger.find(db, MetalType.GOLD, "22K", "Ring")
    assert ring.quantity == 3
    assert ring.weight == Decimal("18.500")
    last = db.query(StockTransaction).filter(
        StockTransaction.stock_id == ring.id
    ).order_by(StockTransaction.id.desc()).first()
    assert last.transaction_type == TransactionType.ADJUSTMENT
    assert last.quantity_change == -1


def test_import_reports_bad_rows(db):
    frame = pd.DataFrame([
        {"Product Name": "Ring", "Metal Type": "Bronze", "Purity": "22K", "Qty": 1},
        {"Product Name": "Chain", "Metal Type": "Gold", "Purity": None, "Qty": 1},
        {"Product Name": "Bangle", "Metal Type": "Gold", "Purity": "22K", "Qty": -1},
        {"Product Name": "Coin", "Metal Type": "Gold", "Purity": "24K", "Qty": 1},
    ])
    result = import_stock_frame(db, frame, "admin")
    assert result["created"] == 1
    assert result["failed"] == 3
    assert [e["row"] for e in result["errors"]] == [2, 3, 4]


def test_csv_upload_and_export(client, auth_headers):
    csv = b"Product,Metal,Purity,Qty,Weight\nRing,Gold,22K,4,18.5\n"
    response = client.post(
        "/excel/stock/import",
        files={"file": ("stock.csv", csv, "text/csv")},
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    assert response.json()["created"] == 1

    export = client.get("/excel/stock/export", headers=auth_headers)
    assert export.status_code == 200
    sheet = pd.read_excel(BytesIO(export.content), engine="openpyxl")
    assert sheet.loc[0, "Product Name"] == "Ring"
    assert sheet.loc[0, "Quantity"] == 4


def test_unsupported_upload(client, auth_headers):
    response = client.post(
        "/excel/stock/import",
        files={"file": ("stock.txt", b"Ring,Gold", "text/plain")},
        headers=auth_headers,
    )
    assert response.status_code == 400


def test_seed_is_idempotent(db):
    created = seed_rate_grid(db)
    assert created > 0
    assert seed_rate_grid(db) == 0
    db.commit()

    rates = db.query(Rate).all()
    assert all(r.rate is None and not r.is_active for r in rates)

    assert seed_admin(db, "owner", "owner@example.com", "Owner@12345") is not None
    assert seed_admin(db, "owner", "owner@example.com", "Owner@12345") is None
