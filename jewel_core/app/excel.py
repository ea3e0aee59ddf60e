from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, List, Optional

import pandas as pd
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from .models import MetalType, StockRecord
from .security import Permission, get_db, require_permission
from .services.errors import JewelCoreError, StockWriteError
from .services.pricing import to_decimal
from .services.stock_service import StockLedger, StockService, commit_stock
from .routers.errors import http_error

router = APIRouter(prefix="/excel", tags=["excel"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _to_native(value: Any):
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if hasattr(value, "item"):
        try:
            return value.item()
        except (TypeError, ValueError):
            return value
    return value


# Maps common spreadsheet headers to stock fields
DEFAULT_COLUMN_MAPPINGS = {
    "product_name": "product_name", "product name": "product_name", "product": "product_name",
    "item": "product_name", "item name": "product_name", "name": "product_name",
    "description": "product_name",

    "metal_type": "metal_type", "metal type": "metal_type", "metal": "metal_type",

    "purity": "purity", "karat": "purity", "carat": "purity", "fineness": "purity",

    "quantity": "quantity", "qty": "quantity", "pcs": "quantity", "pieces": "quantity",
    "nos": "quantity",

    "weight": "weight", "weight (g)": "weight", "wt": "weight", "weight_g": "weight",
    "net weight": "weight", "net wt": "weight",

    "cost_price": "cost_price", "cost price": "cost_price", "cost price (₹/g)": "cost_price",
    "cost": "cost_price",

    "selling_reference_price": "selling_reference_price", "selling price": "selling_reference_price",
    "selling price (₹/g)": "selling_reference_price", "selling_price": "selling_reference_price",

    "low_stock_threshold": "low_stock_threshold", "low stock threshold": "low_stock_threshold",
    "threshold": "low_stock_threshold",

    "notes": "notes", "remarks": "notes", "comments": "notes",
}

REQUIRED_FIELDS = ("product_name", "metal_type", "purity")

EXPORT_COLUMNS = [
    "ID", "Product Name", "Metal Type", "Purity", "Quantity", "Weight (g)",
    "Cost Price (₹/g)", "Selling Price (₹/g)", "Stock Value (₹)",
    "Low Stock Threshold", "Stock Status", "Last Updated", "Notes",
]


def _find_column_mapping(columns: List[str]) -> dict:
    """Detect which spreadsheet columns hold which stock fields."""
    mapping = {}
    for col in columns:
        col_lower = str(col).lower().strip()
        if col_lower in DEFAULT_COLUMN_MAPPINGS:
            db_field = DEFAULT_COLUMN_MAPPINGS[col_lower]
            if db_field not in mapping.values():
                mapping[col] = db_field
    return mapping


def _read_file_to_dataframe(content: bytes, filename: str) -> pd.DataFrame:
    """First sheet of an .xlsx file, or a .csv file, as a DataFrame."""
    filename_lower = filename.lower()

    if filename_lower.endswith(".xlsx"):
        try:
            return pd.read_excel(BytesIO(content), sheet_name=0, engine="openpyxl")
        except (ValueError, OSError, KeyError) as exc:
            raise HTTPException(status_code=400, detail=f"Failed to read Excel file: {exc}")

    if filename_lower.endswith(".csv"):
        for encoding in ("utf-8", "latin-1"):
            try:
                return pd.read_csv(BytesIO(content), encoding=encoding)
            except UnicodeDecodeError:
                continue
        raise HTTPException(status_code=400, detail="Failed to read CSV file: unknown encoding")

    raise HTTPException(status_code=400, detail="Only .xlsx and .csv files are supported")


def stock_dataframe(records: List[StockRecord]) -> pd.DataFrame:
    rows = []
    for item in records:
        item_weight = Decimal(item.weight or 0)
        selling = Decimal(item.selling_reference_price or 0)
        rows.append({
            "ID": item.id,
            "Product Name": item.product_name,
            "Metal Type": item.metal_type.value,
            "Purity": item.purity,
            "Quantity": item.quantity,
            "Weight (g)": float(item_weight),
            "Cost Price (₹/g)": float(item.cost_price or 0),
            "Selling Price (₹/g)": float(selling),
            "Stock Value (₹)": float(round(item_weight * selling, 2)),
            "Low Stock Threshold": item.low_stock_threshold,
            "Stock Status": "Low Stock" if item.is_low_stock else "Normal",
            "Last Updated": (item.updated_at or item.created_at).isoformat() if (item.updated_at or item.created_at) else "",
            "Notes": item.notes or "",
        })
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def _metal_type(value) -> Optional[MetalType]:
    text = str(value).strip().lower()
    for metal in MetalType:
        if metal.value.lower() == text or metal.name.lower() == text:
            return metal
    return None


def _row_values(row: Dict[str, Any], line: int) -> dict:
    """Validate one mapped row before anything touches the ledger."""
    missing = [f for f in REQUIRED_FIELDS if row.get(f) in (None, "")]
    if missing:
        raise ValueError(f"row {line}: missing {', '.join(missing)}")

    metal_type = _metal_type(row["metal_type"])
    if metal_type is None:
        raise ValueError(f"row {line}: unknown metal type {row['metal_type']!r}")

    purity = row["purity"]
    if isinstance(purity, float) and purity.is_integer():
        purity = int(purity)

    values = {
        "metal_type": metal_type,
        "purity": str(purity).strip(),
        "product_name": str(row["product_name"]).strip(),
        "quantity": None,
        "weight": None,
        "cost_price": None,
        "selling_reference_price": None,
        "low_stock_threshold": None,
        "notes": row.get("notes"),
    }
    try:
        if row.get("quantity") is not None:
            values["quantity"] = int(to_decimal(row["quantity"], "quantity"))
        if row.get("weight") is not None:
            values["weight"] = to_decimal(row["weight"], "weight")
        for name in ("cost_price", "selling_reference_price"):
            if row.get(name) is not None:
                values[name] = to_decimal(row[name], name)
        if row.get("low_stock_threshold") is not None:
            values["low_stock_threshold"] = int(to_decimal(row["low_stock_threshold"], "low_stock_threshold"))
    except JewelCoreError as e:
        raise ValueError(f"row {line}: {e}")

    for name in ("quantity", "weight", "cost_price", "selling_reference_price", "low_stock_threshold"):
        if values[name] is not None and values[name] < 0:
            raise ValueError(f"row {line}: {name} cannot be negative")
    return values


def import_stock_frame(db: Session, df: pd.DataFrame, actor: str,
                       column_mapping: Optional[dict] = None) -> dict:
    """
    Create or update stock records from a sheet.

    Existing SKUs get an adjustment to the sheet's quantity/weight (blank
    cells keep the current balance); new SKUs are created with the sheet's
    balances as their initial stock. Bad rows are reported and skipped.
    """
    mapping = column_mapping or _find_column_mapping([str(c) for c in df.columns])
    if "product_name" not in mapping.values():
        raise HTTPException(status_code=400, detail="No product name column found")

    created, updated, errors = [], [], []
    for index, raw in df.iterrows():
        line = index + 2  # header is row 1
        row = {field: _to_native(raw[col]) for col, field in mapping.items() if col in raw}
        if all(v in (None, "") for v in row.values()):
            continue
        try:
            values = _row_values(row, line)
        except ValueError as e:
            errors.append({"row": line, "error": str(e)})
            continue

        try:
            record = StockLedger.find(db, values["metal_type"], values["purity"], values["product_name"])
            if record is None:
                record = StockService.create_item(
                    db, values["metal_type"], values["purity"], values["product_name"], actor,
                    quantity=values["quantity"] or 0,
                    weight=values["weight"] or Decimal("0"),
                    cost_price=values["cost_price"],
                    selling_reference_price=values["selling_reference_price"],
                    low_stock_threshold=values["low_stock_threshold"],
                    notes=values["notes"],
                )
                created.append(record.sku_label)
            else:
                record = StockLedger.lock(db, record.id)
                if values["quantity"] is not None or values["weight"] is not None:
                    StockLedger.apply_adjustment(
                        record, values["quantity"], values["weight"], actor,
                        notes="Bulk import from spreadsheet"
                    )
                StockService.update_item(
                    db, record.id,
                    cost_price=values["cost_price"],
                    selling_reference_price=values["selling_reference_price"],
                    low_stock_threshold=values["low_stock_threshold"],
                    notes=values["notes"],
                )
                updated.append(record.sku_label)
        except StockWriteError:
            db.rollback()
            raise
        except JewelCoreError as e:
            errors.append({"row": line, "error": str(e)})

    commit_stock(db, created + updated)
    return {
        "created": len(created),
        "updated": len(updated),
        "failed": len(errors),
        "errors": errors,
        "message": f"Import completed: {len(created)} created, {len(updated)} updated, {len(errors)} failed",
    }


@router.get("/stock/export")
async def export_stock(
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.REPORT_EXPORT))
):
    """Download the stock register as an .xlsx file."""
    records = db.query(StockRecord).order_by(
        StockRecord.metal_type, StockRecord.purity, StockRecord.product_name
    ).all()

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        stock_dataframe(records).to_excel(writer, sheet_name="Stock", index=False)
    buffer.seek(0)

    filename = f"stock_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
    return StreamingResponse(
        buffer,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/stock/preview")
async def preview_stock_import(
    file: UploadFile = File(...),
    current_user=Depends(require_permission(Permission.STOCK_VIEW))
):
    """Show the detected columns and first rows without importing."""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    df = _read_file_to_dataframe(content, file.filename or "")
    cols = [str(c).strip() for c in df.columns.tolist()]
    rows = [[_to_native(v) for v in r.tolist()] for _, r in df.head(20).iterrows()]
    return {
        "columns": cols,
        "rows": rows,
        "detected_mapping": _find_column_mapping(cols),
        "row_count": len(df.index),
    }


@router.post("/stock/import")
async def import_stock(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user=Depends(require_permission(Permission.STOCK_ADJUST))
):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    df = _read_file_to_dataframe(content, file.filename or "")
    try:
        return import_stock_frame(db, df, current_user.username)
    except JewelCoreError as e:
        raise http_error(e)


@router.get("/template")
async def get_excel_template(current_user=Depends(require_permission(Permission.STOCK_VIEW))):
    """Expected spreadsheet format for stock import."""
    return {
        "supported_columns": {
            "product_name": ["Product Name", "Product", "Item", "Name"],
            "metal_type": ["Metal Type", "Metal"],
            "purity": ["Purity", "Karat", "Fineness"],
            "quantity": ["Quantity", "Qty", "Pcs"],
            "weight": ["Weight (g)", "Weight", "Wt"],
            "cost_price": ["Cost Price", "Cost"],
            "selling_reference_price": ["Selling Price"],
            "low_stock_threshold": ["Low Stock Threshold", "Threshold"],
            "notes": ["Notes", "Remarks"],
        },
        "metal_types": [m.value for m in MetalType],
        "example_format": {
            "columns": ["Product Name", "Metal Type", "Purity", "Qty", "Weight (g)", "Cost Price"],
            "sample_row": ["Ring", "Gold", "22K", "4", "18.500", "6000"],
        },
    }
