"""
Bill number allocation: ``<SHOPCODE>/<DDMMYY>/<NNN>``.

The day's counter lives in ``number_sequences`` and is read with
SELECT FOR UPDATE. It is seeded from the highest bill number already stored
for the day, so a missing or stale counter row can never hand out a number
that is already taken. Any collision that still slips through is caught by
the unique constraint on ``bills.bill_number`` and retried by the caller.
"""

import logging
import re
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import shop_now, shop_today
from ..models import Bill, NumberSequence
from .errors import DuplicateBillNumberError

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 3
FALLBACK_MARKER = "F"

# driver messages for a row or table lock that could not be taken in time
LOCK_CONFLICT_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock wait timeout",
    "could not obtain lock",
    "lock not available",
    "deadlock",
)

BILL_NUMBER_RE = re.compile(r"^(?P<prefix>.+)/(?P<date>\d{6})/(?P<seq>\d+)$")


def date_segment(day: date) -> str:
    return day.strftime("%d%m%y")


def format_bill_number(prefix: str, day: date, sequence: int) -> str:
    return f"{prefix}/{date_segment(day)}/{str(sequence).zfill(SEQUENCE_WIDTH)}"


def parse_sequence(bill_number: str) -> Optional[int]:
    """Numeric suffix of a regular bill number, None for fallback or foreign formats."""
    match = BILL_NUMBER_RE.match(bill_number or "")
    if not match:
        return None
    return int(match.group("seq"))


def is_fallback_number(bill_number: str) -> bool:
    return (bill_number or "").rsplit("/", 1)[-1].startswith(FALLBACK_MARKER)


def fallback_bill_number(prefix: str, day: date, now: Optional[datetime] = None) -> str:
    """Timestamp-derived number used when the sequence store cannot be read."""
    now = now or shop_now()
    return f"{prefix}/{date_segment(day)}/{FALLBACK_MARKER}{now.strftime('%H%M%S%f')}"


def is_lock_conflict(error: SQLAlchemyError) -> bool:
    """True when the store refused the counter because another writer holds it."""
    if not isinstance(error, OperationalError):
        return False
    message = str(getattr(error, "orig", None) or error).lower()
    return any(marker in message for marker in LOCK_CONFLICT_MARKERS)


def is_bill_number_conflict(error: IntegrityError) -> bool:
    """True when the violated constraint is the uniqueness of ``bills.bill_number``."""
    message = str(getattr(error, "orig", None) or error).lower()
    return "bill_number" in message


def latest_bill_number(db: Session, prefix: str, day: date) -> Optional[str]:
    """Most recent regular bill number for the day (string order is enough: fixed widths)."""
    pattern = f"{prefix}/{date_segment(day)}/%"
    row = db.query(Bill.bill_number).filter(
        Bill.bill_number.like(pattern),
        Bill.number_is_fallback == False,  # noqa: E712
    ).order_by(
        Bill.bill_number.desc()
    ).first()
    return row[0] if row else None


def sequence_from_latest(db: Session, prefix: str, day: date) -> int:
    """
    Next sequence computed only from stored bills.

    This read-then-compute step is not safe on its own: two requests that
    run it before either bill is stored get the same answer.
    """
    last = latest_bill_number(db, prefix, day)
    return (parse_sequence(last) or 0) + 1 if last else 1


def next_bill_number(db: Session, prefix: str, today: Optional[date] = None) -> str:
    """
    Allocate the next bill number for ``today``.

    The counter increment is flushed but not committed; it becomes durable
    together with the bill that uses it. A counter held by another
    uncommitted allocation is a collision (``DuplicateBillNumberError``, the
    caller retries). Only when the store itself fails is a fallback number
    returned (see ``is_fallback_number``).
    """
    today = today or shop_today()
    candidate = format_bill_number(prefix, today, 1)
    sequence_name = f"bill:{prefix}/{date_segment(today)}"

    try:
        seq = db.query(NumberSequence).filter(
            NumberSequence.sequence_name == sequence_name
        ).with_for_update().first()

        if not seq:
            seq = NumberSequence(
                sequence_name=sequence_name,
                prefix=f"{prefix}/{date_segment(today)}",
                current_number=0,
                padding=SEQUENCE_WIDTH,
            )
            db.add(seq)

        last_stored = sequence_from_latest(db, prefix, today) - 1
        seq.current_number = max(seq.current_number or 0, last_stored) + 1
        candidate = format_bill_number(prefix, today, seq.current_number)
        db.flush()
        return candidate

    except IntegrityError as e:
        # another request created the day's counter row first
        db.rollback()
        raise DuplicateBillNumberError(format_bill_number(prefix, today, 1)) from e

    except SQLAlchemyError as e:
        db.rollback()
        if is_lock_conflict(e):
            logger.warning("Bill number counter for %s is held by another request; retrying", sequence_name)
            raise DuplicateBillNumberError(candidate) from e
        number = fallback_bill_number(prefix, today)
        logger.warning(
            "Bill number lookup failed (%s); issued fallback number %s - reconcile later",
            e.__class__.__name__, number,
        )
        return number
