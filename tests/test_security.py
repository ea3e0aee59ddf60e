from datetime import timedelta

import pytest
from fastapi import HTTPException

from jewel_core.app.routers.errors import http_error
from jewel_core.app.security import (
    Permission, create_access_token, decode_token, get_password_hash,
    get_role_permissions, verify_password
)
from jewel_core.app.services.errors import (
    DuplicateBillNumberError, ReconciliationRequiredError, StockWriteError
)


def test_password_hashing():
    hashed = get_password_hash("Counter@123")
    assert verify_password("Counter@123", hashed)
    assert not verify_password("counter@123", hashed)


def test_token_round_trip_and_expiry():
    payload = decode_token(create_access_token({"sub": "admin"}))
    assert payload["sub"] == "admin"
    assert payload["type"] == "access"

    expired = create_access_token({"sub": "admin"}, expires_delta=timedelta(minutes=-1))
    with pytest.raises(HTTPException) as exc:
        decode_token(expired)
    assert exc.value.status_code == 401


def test_role_permissions():
    assert Permission.BILL_DELETE in get_role_permissions("Admin")
    assert Permission.BILL_DELETE not in get_role_permissions("Manager")
    assert Permission.RATE_UPDATE in get_role_permissions("Manager")
    assert get_role_permissions("Staff") == {
        Permission.BILL_VIEW, Permission.BILL_CREATE, Permission.STOCK_VIEW, Permission.RATE_VIEW
    }
    assert get_role_permissions("Guest") == set()


def test_error_status_mapping():
    reconcile = http_error(ReconciliationRequiredError("revert kept", bill_number="SMJ/191026/001",
                                                       skus=["Gold 22K Ring"]))
    assert reconcile.status_code == 409
    assert reconcile.detail["manual_review_required"]
    assert reconcile.detail["affected_skus"] == ["Gold 22K Ring"]

    assert http_error(StockWriteError("down")).status_code == 500
    assert http_error(DuplicateBillNumberError("SMJ/191026/001", 3)).status_code == 409
