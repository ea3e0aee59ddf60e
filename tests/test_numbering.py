import re
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from jewel_core.app import config
from jewel_core.app.models import Bill
from jewel_core.app.services import bill_service, numbering
from jewel_core.app.services.bill_service import BillService
from jewel_core.app.services.errors import DuplicateBillNumberError
from jewel_core.app.services.numbering import (
    fallback_bill_number, is_fallback_number, next_bill_number, parse_sequence,
    sequence_from_latest
)

from conftest import ring

DAY = date(2026, 10, 19)


def _store_bill(db, number):
    db.add(Bill(bill_number=number, customer_name="Walk-in", customer_phone="9876543210"))
    db.commit()


def test_first_number_of_the_day(db):
    assert next_bill_number(db, "SMJ", DAY) == "SMJ/191026/001"


def test_numbers_are_sequential_and_reset_daily(db):
    assert next_bill_number(db, "SMJ", DAY) == "SMJ/191026/001"
    db.commit()
    assert next_bill_number(db, "SMJ", DAY) == "SMJ/191026/002"
    db.commit()
    assert next_bill_number(db, "SMJ", date(2026, 10, 20)) == "SMJ/201026/001"


def test_counter_never_goes_below_stored_bills(db):
    _store_bill(db, "SMJ/191026/007")
    assert next_bill_number(db, "SMJ", DAY) == "SMJ/191026/008"


def test_second_session_sees_committed_allocation(db, other_db):
    _store_bill(db, next_bill_number(db, "SMJ", DAY))
    assert next_bill_number(other_db, "SMJ", DAY) == "SMJ/191026/002"


def test_read_then_compute_races(db, other_db):
    # both requests read before either stores its bill
    first = sequence_from_latest(db, "SMJ", DAY)
    second = sequence_from_latest(other_db, "SMJ", DAY)
    assert first == second == 1

    _store_bill(db, numbering.format_bill_number("SMJ", DAY, first))
    other_db.add(Bill(
        bill_number=numbering.format_bill_number("SMJ", DAY, second),
        customer_name="Walk-in",
        customer_phone="9123456780",
    ))
    with pytest.raises(IntegrityError):
        other_db.commit()


def test_fallback_when_store_unreadable(db, monkeypatch):
    def broken(*args, **kwargs):
        raise SQLAlchemyError("sequence store unavailable")

    monkeypatch.setattr(numbering, "sequence_from_latest", broken)
    number = next_bill_number(db, "SMJ", DAY)
    assert is_fallback_number(number)
    assert re.match(r"^SMJ/191026/F\d{12}$", number)
    assert parse_sequence(number) is None


def test_fallback_format():
    number = fallback_bill_number("SMJ", DAY, datetime(2026, 10, 19, 14, 5, 9, 123456))
    assert number == "SMJ/191026/F140509123456"
    assert not is_fallback_number("SMJ/191026/001")


def test_collision_is_retried(db, gold_rate, make_draft):
    _store_bill(db, "SMJ/191026/001")
    numbers = iter(["SMJ/191026/001", "SMJ/191026/002"])

    result = BillService.create_bill(
        db, make_draft(), allocator=lambda *_: next(numbers), today=DAY
    )
    assert result.bill.bill_number == "SMJ/191026/002"
    assert db.query(Bill).count() == 2


def test_collision_gives_up_after_bounded_attempts(db, gold_rate, make_draft, monkeypatch):
    monkeypatch.setenv("BILL_NUMBER_ATTEMPTS", "3")
    _store_bill(db, "SMJ/191026/001")
    calls = []

    def same_number(*args):
        calls.append(1)
        return "SMJ/191026/001"

    with pytest.raises(DuplicateBillNumberError) as exc:
        BillService.create_bill(db, make_draft(), allocator=same_number, today=DAY)
    assert exc.value.attempts == 3
    assert len(calls) == 3
    assert db.query(Bill).count() == 1


def test_fallback_number_is_flagged_on_the_bill(db, gold_rate, make_draft):
    result = BillService.create_bill(
        db, make_draft(ring()),
        allocator=lambda db, prefix, today: fallback_bill_number(prefix, today),
        today=DAY,
    )
    assert result.bill.number_is_fallback


def test_counter_held_by_open_allocation_is_a_collision(db, impatient_db):
    # both sessions allocate before either commits
    assert next_bill_number(db, "SMJ", DAY) == "SMJ/191026/001"

    with pytest.raises(DuplicateBillNumberError):
        next_bill_number(impatient_db, "SMJ", DAY)

    db.commit()
    assert next_bill_number(impatient_db, "SMJ", DAY) == "SMJ/191026/002"


def test_create_bill_retries_after_lock_wait(db, impatient_db, gold_rate, make_draft):
    next_bill_number(db, "SMJ", DAY)
    calls = []

    def allocate(session, prefix, today):
        calls.append(1)
        if len(calls) == 2:
            db.commit()
        return next_bill_number(session, prefix, today)

    result = BillService.create_bill(impatient_db, make_draft(), allocator=allocate, today=DAY)
    assert len(calls) == 2
    assert result.bill.bill_number == "SMJ/191026/002"
    assert not result.bill.number_is_fallback


def test_store_failure_still_falls_back(db, monkeypatch):
    def unreachable(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))

    monkeypatch.setattr(numbering, "sequence_from_latest", unreachable)
    assert is_fallback_number(next_bill_number(db, "SMJ", DAY))


def test_default_day_comes_from_shop_clock(db, monkeypatch):
    monkeypatch.setattr(numbering, "shop_today", lambda: DAY)
    assert next_bill_number(db, "SMJ") == "SMJ/191026/001"


def test_number_follows_bill_date_across_midnight(db, gold_rate, make_draft, monkeypatch):
    monkeypatch.setattr(bill_service, "shop_now", lambda: datetime(2026, 10, 19, 0, 5))
    bill = BillService.create_bill(db, make_draft()).bill

    assert bill.bill_number == "SMJ/191026/001"
    assert bill.bill_date == datetime(2026, 10, 19, 0, 5)
    assert BillService.daily_report(db, DAY)["total_bills"] == 1
    assert BillService.daily_report(db, date(2026, 10, 18))["total_bills"] == 0

    monkeypatch.setattr(bill_service, "shop_today", lambda: DAY)
    assert BillService.daily_report(db)["date"] == "2026-10-19"


def test_shop_clock_follows_configured_zone(monkeypatch):
    monkeypatch.setenv("SHOP_TIMEZONE", "Asia/Kolkata")
    now = config.shop_now()
    expected = datetime.now(ZoneInfo("Asia/Kolkata")).replace(tzinfo=None)

    assert now.tzinfo is None
    assert abs((expected - now).total_seconds()) < 5
    assert config.shop_today() in (now.date(), expected.date())
