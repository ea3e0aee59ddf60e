# tests/conftest.py
# ---------------------------------------------------------------------
# - A throwaway SQLite file per session, set before the app is imported
# - Schema dropped and recreated for every test
# - `db` is a plain session; `other_db` a second, independent one for
#   concurrency tests against the same file
# - `impatient_db` waits only briefly for a write lock held elsewhere
# ---------------------------------------------------------------------

import os
import tempfile
from decimal import Decimal
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="jewel_core_tests_"))
os.environ["DATABASE_URL"] = f"sqlite:///{(_TMP_DIR / 'test.db').as_posix()}"
os.environ.setdefault("JEWEL_SECRET_KEY", "test-secret-key-for-jewel-core-0123456789")
os.environ.setdefault("SHOP_CODE", "SMJ")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from jewel_core.app import models  # noqa: E402
from jewel_core.app.db import (  # noqa: E402
    DATABASE_URL, SessionLocal, create_db_and_tables, drop_db_and_tables
)
from jewel_core.app.main import create_app  # noqa: E402
from jewel_core.app.models import MakingChargeType, MetalType  # noqa: E402
from jewel_core.app.security import create_access_token, get_password_hash  # noqa: E402
from jewel_core.app.services.bill_service import BillDraft, CustomerInfo  # noqa: E402
from jewel_core.app.services.billing import TaxFields  # noqa: E402
from jewel_core.app.services.pricing import RawItem  # noqa: E402
from jewel_core.app.services.rate_service import RateService  # noqa: E402

ADMIN_PASSWORD = "Admin@12345"
STAFF_PASSWORD = "Staff@12345"

_HASHES = {}


def _hash(password: str) -> str:
    # bcrypt is slow on purpose; hash each test password once per session
    if password not in _HASHES:
        _HASHES[password] = get_password_hash(password)
    return _HASHES[password]


@pytest.fixture(autouse=True)
def _fresh_schema():
    drop_db_and_tables()
    create_db_and_tables()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def other_db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def impatient_db():
    """A session on its own engine that gives up on a held write lock after 100 ms."""
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False, "timeout": 0.1})
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        engine.dispose()


@pytest.fixture
def client():
    with TestClient(create_app()) as c:
        yield c


def _make_user(db, username: str, role: str, password: str) -> models.User:
    user = models.User(
        full_name=username.title(),
        email=f"{username}@example.com",
        username=username,
        password_hash=_hash(password),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db):
    return _make_user(db, "admin", "Admin", ADMIN_PASSWORD)


@pytest.fixture
def staff_user(db):
    return _make_user(db, "counter", "Staff", STAFF_PASSWORD)


@pytest.fixture
def auth_headers(admin_user):
    token = create_access_token({"sub": admin_user.username, "role": admin_user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers(staff_user):
    token = create_access_token({"sub": staff_user.username, "role": staff_user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def gold_rate(db):
    """Gold 22K priced at 6000 per gram."""
    rate = RateService.upsert_rate(db, models.MetalType.GOLD, "22K", 6000, None)
    db.commit()
    return rate


def ring(product_name="Ring", gross_weight="10", quantity=1, is_exchange=False, **overrides):
    """A Gold 22K item, 10% making charge, priced from the rate table unless ``rate`` is given."""
    fields = dict(
        product_name=product_name,
        metal_type=MetalType.GOLD,
        purity="22K",
        gross_weight=Decimal(gross_weight),
        quantity=quantity,
        making_charge_type=MakingChargeType.PERCENT,
        making_charge_value=Decimal("10"),
        is_exchange=is_exchange,
    )
    fields.update(overrides)
    return RawItem(**fields)


@pytest.fixture
def make_draft():
    def _make(*items, cgst="0", sgst="0", igst="0"):
        return BillDraft(
            customer=CustomerInfo(name="Sita Devi", phone="9876543210"),
            items=list(items) or [ring()],
            tax=TaxFields(cgst=Decimal(cgst), sgst=Decimal(sgst), igst=Decimal(igst)),
        )

    return _make
