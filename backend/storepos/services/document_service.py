# Overview: Service-layer operations for bill numbering; per-day monotonic sequence.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateBillNumberError
from ..extensions import db
from ..models import Bill, BillSequence
from ..time_utils import bill_day


MAX_NUMBER_ATTEMPTS = 5


def _next_sequence_value(day: str) -> int:
    """
    Atomically take the next number of the day's sequence.

    Must run inside the caller's write transaction; the UPDATE holds the
    sequence row until that transaction ends.
    """
    stmt = (
        update(BillSequence)
        .where(BillSequence.sequence_date == day)
        .values(next_number=BillSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(BillSequence.next_number)
            .filter_by(sequence_date=day)
            .scalar()
        )
        return current - 1

    seq = BillSequence(sequence_date=day, next_number=2)
    db.session.add(seq)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another writer created today's row first; the unit of work retries.
        raise DuplicateBillNumberError("Bill sequence row created concurrently") from exc
    return 1


def format_bill_number(day: str, number: int) -> str:
    prefix = current_app.config.get("BILL_NUMBER_PREFIX", "INV")
    return f"{prefix}-{day}-{number:04d}"


def next_bill_number(now: datetime | None = None) -> str:
    """
    Allocate a bill number unique across all bills.

    Numbers come from a per-day sequence; each candidate is checked against
    existing bills so a reset or hand-edited sequence cannot produce a
    duplicate. The unique constraint on bills.bill_number stays the final guard.
    """
    day = bill_day(now)
    for _ in range(MAX_NUMBER_ATTEMPTS):
        candidate = format_bill_number(day, _next_sequence_value(day))
        taken = db.session.query(Bill.id).filter_by(bill_number=candidate).first()
        if taken is None:
            return candidate
        current_app.logger.warning("Bill number %s already used, skipping", candidate)
    raise DuplicateBillNumberError(
        "Could not allocate a unique bill number",
        details={"day": day, "attempts": MAX_NUMBER_ATTEMPTS},
    )
