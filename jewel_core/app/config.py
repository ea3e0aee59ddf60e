"""
Runtime configuration for the jewellery shop service.

All settings come from environment variables with development defaults.
"""

import logging
import os
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo


def get_shop_code() -> str:
    """Bill number prefix (``SMJ/191026/001``)."""
    return os.getenv("SHOP_CODE", "SMJ").strip().upper() or "SMJ"


def get_shop_profile() -> dict:
    return {
        "name": os.getenv("SHOP_NAME", "Shri Mahakaleshwar Jewellers"),
        "address": os.getenv("SHOP_ADDRESS", "Anisabad, Patna, Bihar"),
        "gstin": os.getenv("SHOP_GSTIN", ""),
        "code": get_shop_code(),
    }


def get_low_stock_threshold() -> int:
    return int(os.getenv("LOW_STOCK_THRESHOLD", "5"))


def get_bill_number_attempts() -> int:
    """Bounded number of allocations tried before a collision becomes fatal."""
    return max(1, int(os.getenv("BILL_NUMBER_ATTEMPTS", "3")))


def shop_now() -> datetime:
    """
    Naive wall-clock time of the shop.

    Bill dates, the date segment of bill numbers and report day windows all
    come from this clock. ``SHOP_TIMEZONE`` (e.g. ``Asia/Kolkata``) pins it to
    a zone; otherwise the server's local time is used.
    """
    zone = os.getenv("SHOP_TIMEZONE", "").strip()
    if zone:
        return datetime.now(ZoneInfo(zone)).replace(tzinfo=None)
    return datetime.now()


def shop_today() -> date:
    return shop_now().date()


def get_cors_origins():
    """Get CORS origins from environment or use defaults for development"""
    origins_env = os.getenv("CORS_ORIGINS", "")
    if origins_env:
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    # Default development origins
    return [
        "http://127.0.0.1:5500",
        "http://localhost:5500",
        "http://127.0.0.1:3000",
        "http://localhost:3000",
        "http://127.0.0.1:8080",
        "http://localhost:8080",
    ]


# Business constants
EXCHANGE_DEDUCTION_PERCENT = Decimal("3")
MONEY_PLACES = Decimal("0.01")
WEIGHT_PLACES = Decimal("0.001")


def configure_logging() -> None:
    """Configure the ``jewel_core`` logger once; repeated calls are no-ops."""
    root = logging.getLogger("jewel_core")
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))
    root.addHandler(handler)
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
