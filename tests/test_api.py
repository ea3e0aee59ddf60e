from jewel_core.app.config import shop_today
from jewel_core.app.services.numbering import date_segment

from conftest import ADMIN_PASSWORD


def _bill_payload(**item_overrides):
    item = {
        "product_name": "Ring",
        "metal_type": "Gold",
        "purity": "22K",
        "gross_weight": "10",
        "making_charge_type": "%",
        "making_charge_value": "10",
    }
    item.update(item_overrides)
    return {
        "customer": {"name": "Sita Devi", "phone": "98765-43210", "pan": "abcde1234f"},
        "items": [item, dict(item)],
        "cgst": "1000",
        "sgst": "1000",
        "payment_mode": "upi",
    }


def _set_rate(client, headers, rate="6000"):
    response = client.post(
        "/api/rates", json={"metal_type": "Gold", "purity": "22K", "rate": rate}, headers=headers
    )
    assert response.status_code == 200, response.text
    return response.json()


# ---------------------------------------------------------------------------
# auth
# ---------------------------------------------------------------------------

def test_login_with_json_and_form(client, admin_user):
    response = client.post("/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    assert response.json()["role"] == "Admin"

    response = client.post("/auth/login", data={"username": "admin", "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["username"] == "admin"


def test_login_rejects_bad_password(client, admin_user):
    response = client.post("/auth/login", json={"username": "admin", "password": "wrong-password"})
    assert response.status_code == 400


def test_endpoints_require_token(client):
    assert client.get("/api/bills").status_code == 401


def test_register_needs_admin(client, auth_headers, staff_headers):
    user = {"full_name": "New Staff", "email": "new@example.com", "username": "newstaff",
            "password": "Secret@123", "role": "Staff"}
    assert client.post("/auth/register", json=user, headers=staff_headers).status_code == 403

    response = client.post("/auth/register", json=user, headers=auth_headers)
    assert response.status_code == 201
    assert client.post("/auth/register", json=user, headers=auth_headers).status_code == 400


# ---------------------------------------------------------------------------
# rates
# ---------------------------------------------------------------------------

def test_rate_upsert_and_listing(client, auth_headers):
    created = _set_rate(client, auth_headers)
    updated = _set_rate(client, auth_headers, "6100")
    assert created["id"] == updated["id"]

    grouped = client.get("/api/rates", headers=auth_headers).json()
    assert grouped["Gold"]["22K"] == 6100.0
    assert grouped["Gold"]["24K"] is None

    history = client.get("/api/rates/history", headers=auth_headers).json()
    assert [h["new_rate"] for h in history] == [6100.0, 6000.0]
    assert history[0]["old_rate"] == 6000.0

    quote = client.get("/api/rates/exchange", params={"metal_type": "Gold", "purity": "22K"},
                       headers=auth_headers).json()
    assert quote["exchange_rate"] == 5917.0


def test_rate_must_be_positive(client, auth_headers):
    response = client.post("/api/rates", json={"metal_type": "Gold", "purity": "22K", "rate": 0},
                           headers=auth_headers)
    assert response.status_code == 422


def test_inactive_rate_is_not_used(client, auth_headers):
    rate = _set_rate(client, auth_headers)
    client.put(f"/api/rates/{rate['id']}/status", headers=auth_headers)

    assert client.get("/api/rates/active", headers=auth_headers).json() == []
    response = client.post("/api/bills/calculate", json=_bill_payload(), headers=auth_headers)
    assert response.status_code == 400
    assert "Rate not found" in response.json()["detail"]


# ---------------------------------------------------------------------------
# bills
# ---------------------------------------------------------------------------

def test_calculate_does_not_store(client, auth_headers):
    _set_rate(client, auth_headers)
    response = client.post("/api/bills/calculate", json=_bill_payload(), headers=auth_headers)
    body = response.json()

    assert body["total_amount"] == 134000.0
    assert body["items"][0]["making_charge"] == 6000.0
    assert client.get("/api/bills", headers=auth_headers).json()["total"] == 0


def test_bill_lifecycle(client, auth_headers):
    _set_rate(client, auth_headers)
    client.post("/api/stock", json={"product_name": "Ring", "metal_type": "Gold", "purity": "22K",
                                    "quantity": 5, "weight": "50"}, headers=auth_headers)

    response = client.post("/api/bills", json=_bill_payload(), headers=auth_headers)
    assert response.status_code == 201, response.text
    body = response.json()
    bill = body["bill"]
    assert body["stock_synced"]
    assert bill["bill_number"] == f"SMJ/{date_segment(shop_today())}/001"
    assert bill["total_amount"] == 134000.0
    assert bill["amount_in_words"] == "One Lakh Thirty Four Thousand Rupees Only"
    assert bill["customer_phone"] == "9876543210"
    assert bill["customer_pan"] == "ABCDE1234F"

    by_number = client.get("/api/bills/by-number", params={"number": bill["bill_number"]},
                           headers=auth_headers)
    assert by_number.json()["id"] == bill["id"]

    stock = client.get("/api/stock", headers=auth_headers).json()["items"][0]
    assert stock["quantity"] == 3

    payload = _bill_payload()
    payload["items"] = payload["items"][:1]
    updated = client.put(f"/api/bills/{bill['id']}", json=payload, headers=auth_headers).json()
    assert updated["bill"]["subtotal"] == 66000.0
    assert client.get("/api/stock", headers=auth_headers).json()["items"][0]["quantity"] == 4

    deleted = client.delete(f"/api/bills/{bill['id']}", headers=auth_headers)
    assert deleted.json()["bill_number"] == bill["bill_number"]
    assert client.get(f"/api/bills/{bill['id']}", headers=auth_headers).status_code == 404
    assert client.get("/api/stock", headers=auth_headers).json()["items"][0]["quantity"] == 5


def test_bill_validation_errors(client, auth_headers):
    _set_rate(client, auth_headers)

    bad_pan = _bill_payload()
    bad_pan["customer"]["pan"] = "ABC123"
    assert client.post("/api/bills", json=bad_pan, headers=auth_headers).status_code == 422

    response = client.post("/api/bills", json=_bill_payload(less_weight="12"), headers=auth_headers)
    assert response.status_code == 400
    assert "gross weight must exceed less weight" in response.json()["detail"]

    empty = _bill_payload()
    empty["items"] = []
    assert client.post("/api/bills", json=empty, headers=auth_headers).status_code == 400


def test_staff_cannot_delete_bills(client, auth_headers, staff_headers):
    _set_rate(client, auth_headers)
    bill = client.post("/api/bills", json=_bill_payload(), headers=staff_headers).json()["bill"]
    assert client.delete(f"/api/bills/{bill['id']}", headers=staff_headers).status_code == 403


def test_list_bills_search(client, auth_headers):
    _set_rate(client, auth_headers)
    client.post("/api/bills", json=_bill_payload(), headers=auth_headers)
    other = _bill_payload()
    other["customer"]["name"] = "Ravi Kumar"
    client.post("/api/bills", json=other, headers=auth_headers)

    body = client.get("/api/bills", params={"search": "Ravi"}, headers=auth_headers).json()
    assert body["total"] == 1
    assert body["bills"][0]["customer_name"] == "Ravi Kumar"

    body = client.get("/api/bills", params={"limit": 1}, headers=auth_headers).json()
    assert body["pages"] == 2


# ---------------------------------------------------------------------------
# stock
# ---------------------------------------------------------------------------

def test_stock_adjust_and_history(client, auth_headers):
    created = client.post("/api/stock", json={"product_name": "Chain", "metal_type": "Gold",
                                              "purity": "22K", "quantity": 2, "weight": "20"},
                          headers=auth_headers)
    assert created.status_code == 201
    stock_id = created.json()["id"]

    response = client.post(f"/api/stock/{stock_id}/adjust",
                           json={"adjustment_type": "out", "quantity": 5, "weight": "50"},
                           headers=auth_headers)
    body = response.json()
    assert body["stock"]["quantity"] == 0
    assert body["transaction"]["quantity_change"] == -2
    assert body["transaction"]["requested_quantity"] == 5

    history = client.get(f"/api/stock/{stock_id}/history", headers=auth_headers).json()
    assert [t["transaction_type"] for t in history["transactions"]] == ["out", "in"]

    reconciled = client.post(f"/api/stock/{stock_id}/reconcile", json={"actual_quantity": 1},
                             headers=auth_headers).json()
    assert reconciled["reconciliation"]["quantity_difference"] == 1

    assert client.delete(f"/api/stock/{stock_id}", headers=auth_headers).status_code == 400


def test_duplicate_stock_item(client, auth_headers):
    item = {"product_name": "Chain", "metal_type": "Gold", "purity": "22K"}
    assert client.post("/api/stock", json=item, headers=auth_headers).status_code == 201
    assert client.post("/api/stock", json=item, headers=auth_headers).status_code == 400


# ---------------------------------------------------------------------------
# reports
# ---------------------------------------------------------------------------

def test_reports(client, auth_headers):
    _set_rate(client, auth_headers)
    client.post("/api/bills", json=_bill_payload(), headers=auth_headers)

    overview = client.get("/api/reports/overview", headers=auth_headers).json()
    assert overview["today"] == {"bills": 1, "sales": 134000.0}
    assert overview["bills_pending_stock_sync"] == 0
    assert overview["stock"]["items"] == 1

    sales = client.get("/api/reports/sales", params={"group_by": "month"}, headers=auth_headers).json()
    assert sales["summary"]["total_sales"] == 134000.0
    assert sales["periods"][0]["payment_modes"] == {"upi": 134000.0}

    gst = client.get("/api/reports/gst", headers=auth_headers).json()
    assert gst["summary"]["total_gst"] == 2000.0
    assert gst["summary"]["taxable_value"] == 132000.0

    customers = client.get("/api/reports/customers", params={"search": "sita"}, headers=auth_headers).json()
    assert customers["summary"]["total_customers"] == 1
    assert customers["customers"][0]["total_purchase"] == 134000.0
    assert customers["pagination"]["pages"] == 1

    assert client.get("/api/reports/sales", params={"group_by": "week"},
                      headers=auth_headers).status_code == 422
    assert client.get("/api/reports/customers", params={"customer_type": "vip"},
                      headers=auth_headers).status_code == 422
    assert client.get("/api/reports/customers", params={"sort_by": "phone"},
                      headers=auth_headers).status_code == 400


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
