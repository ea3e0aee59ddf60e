"""
Services package initialization.
Business logic layer for jewellery billing and stock operations.
"""

from .errors import (
    JewelCoreError,
    ValidationError,
    RateNotFoundError,
    EmptyBillError,
    DuplicateBillNumberError,
    StockWriteError,
    ReconciliationRequiredError,
    NotFoundError,
    StockNotFoundError,
    InvalidOperationError,
)
from .pricing import RawItem, LineItem, price_item, exchange_rate
from .billing import TaxFields, BillTotals, aggregate, number_to_words
from .numbering import next_bill_number, format_bill_number, is_fallback_number
from .stock_service import StockLedger, StockService, commit_stock
from .bill_sync import apply_bill, revert_bill
from .rate_service import RateService, DEFAULT_RATE_GRID
from .bill_service import BillService, BillDraft, BillResult, CustomerInfo
from .report_service import ReportService

__all__ = [
    'JewelCoreError',
    'ValidationError',
    'RateNotFoundError',
    'EmptyBillError',
    'DuplicateBillNumberError',
    'StockWriteError',
    'ReconciliationRequiredError',
    'NotFoundError',
    'StockNotFoundError',
    'InvalidOperationError',
    'RawItem',
    'LineItem',
    'price_item',
    'exchange_rate',
    'TaxFields',
    'BillTotals',
    'aggregate',
    'number_to_words',
    'next_bill_number',
    'format_bill_number',
    'is_fallback_number',
    'StockLedger',
    'StockService',
    'commit_stock',
    'apply_bill',
    'revert_bill',
    'RateService',
    'DEFAULT_RATE_GRID',
    'BillService',
    'BillDraft',
    'BillResult',
    'CustomerInfo',
    'ReportService',
]
