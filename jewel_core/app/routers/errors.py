"""Translation of service errors into HTTP responses."""

import logging

from fastapi import HTTPException, status

from ..services.errors import (
    DuplicateBillNumberError, EmptyBillError, InvalidOperationError,
    JewelCoreError, NotFoundError, RateNotFoundError,
    ReconciliationRequiredError, StockWriteError, ValidationError
)

logger = logging.getLogger(__name__)


def http_error(e: JewelCoreError) -> HTTPException:
    if isinstance(e, ReconciliationRequiredError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail())
    if isinstance(e, StockWriteError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.detail())
    if isinstance(e, DuplicateBillNumberError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (ValidationError, RateNotFoundError, EmptyBillError, InvalidOperationError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.error("Unmapped service error: %r", e)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
