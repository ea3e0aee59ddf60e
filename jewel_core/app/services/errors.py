"""Domain errors raised by the billing and stock services."""

from typing import Iterable, Optional


class JewelCoreError(Exception):
    """Base exception for billing and stock operations"""
    pass


class ValidationError(JewelCoreError):
    """Raised when item geometry or pricing inputs are invalid"""
    pass


class RateNotFoundError(JewelCoreError):
    """Raised when no active rate exists for a metal type and purity"""

    def __init__(self, metal_type, purity):
        self.metal_type = metal_type
        self.purity = purity
        metal = getattr(metal_type, "value", metal_type)
        super().__init__(f"Rate not found for {metal} - {purity}")


class EmptyBillError(JewelCoreError):
    """Raised when a bill has no items"""

    def __init__(self, message: str = "At least one item is required"):
        super().__init__(message)


class DuplicateBillNumberError(JewelCoreError):
    """Raised when two allocations produced the same bill number"""

    def __init__(self, bill_number: str, attempts: int = 1):
        self.bill_number = bill_number
        self.attempts = attempts
        super().__init__(
            f"Bill number {bill_number} is already taken "
            f"(after {attempts} attempt{'s' if attempts != 1 else ''})"
        )


class StockWriteError(JewelCoreError):
    """Raised when a stock ledger mutation could not be persisted"""

    def __init__(self, message: str, bill_number: Optional[str] = None, skus: Iterable[str] = ()):
        self.bill_number = bill_number
        self.skus = list(skus)
        super().__init__(message)

    def detail(self) -> dict:
        return {
            "message": str(self),
            "manual_review_required": True,
            "bill_number": self.bill_number,
            "affected_skus": self.skus,
        }


class ReconciliationRequiredError(StockWriteError):
    """
    Raised when an edit or delete left the bill and the stock ledger
    inconsistent. There is no automatic rollback; the bill and the listed
    SKUs need manual review.
    """
    pass


class NotFoundError(JewelCoreError):
    """Raised when a record looked up by id does not exist"""
    pass


class StockNotFoundError(NotFoundError):
    """Raised when a stock record id does not exist"""
    pass


class InvalidOperationError(JewelCoreError):
    """Raised when operation is not allowed in current state"""
    pass
