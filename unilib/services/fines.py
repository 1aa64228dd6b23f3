"""Overdue fine computation and the persisted daily fine rate."""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy.orm import Session, joinedload

from unilib.config.settings import settings
from unilib.models.models import BorrowRecord, BorrowStatus, SystemConfig
from unilib.schemas.schemas import FineUpdateResult
from unilib.utils import today as utc_today

logger = logging.getLogger(__name__)

DAILY_FINE_KEY = "daily_fine_amount"
CENTS = Decimal("0.01")

DateLike = Union[date, datetime]


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def days_overdue(due_date: DateLike, reference_date: DateLike) -> int:
    """Whole days past the due date, floored; zero when not overdue."""
    delta = _as_datetime(reference_date) - _as_datetime(due_date)
    return max(0, delta.days)


def compute_fine(due_date: DateLike, reference_date: DateLike, daily_rate) -> Decimal:
    """
    Fine owed on a loan at reference_date.

    Parameters:
        due_date (date | datetime): When the book was due back.
        reference_date (date | datetime): The day the fine is assessed for.
        daily_rate (Decimal | float | str): Amount charged per late day.

    Returns:
        Decimal: days_overdue * daily_rate in cents, never negative.
    """
    rate = Decimal(str(daily_rate))
    if rate < 0:
        raise ValueError("daily_rate must be >= 0")
    return (Decimal(days_overdue(due_date, reference_date)) * rate).quantize(CENTS)


def get_daily_fine_amount(db: Session) -> Decimal:
    row = db.query(SystemConfig).filter(SystemConfig.key == DAILY_FINE_KEY).first()
    if row is None:
        return settings.default_daily_fine
    return Decimal(row.value)


def set_daily_fine_amount(db: Session, amount, updated_by: str) -> Decimal:
    amount = Decimal(str(amount)).quantize(CENTS)
    if amount < 0:
        raise ValueError("fine amount must be >= 0")

    row = db.query(SystemConfig).filter(SystemConfig.key == DAILY_FINE_KEY).first()
    if row is None:
        row = SystemConfig(key=DAILY_FINE_KEY, value=str(amount), updated_by=updated_by)
        db.add(row)
    else:
        row.value = str(amount)
        row.updated_by = updated_by
    db.commit()
    logger.info(f"Daily fine amount set to {amount} by {updated_by}")
    return amount


def update_overdue_fines(
    db: Session, custom_rate=None, today: Optional[date] = None
) -> List[FineUpdateResult]:
    """Recompute fine_amount for every BORROWED record past its due date.

    The result depends only on the reference day and the rate, so running it
    twice for the same inputs leaves the same amounts.
    """
    today = today or utc_today()
    rate = Decimal(str(custom_rate)) if custom_rate is not None else get_daily_fine_amount(db)

    records = (
        db.query(BorrowRecord)
        .options(joinedload(BorrowRecord.user), joinedload(BorrowRecord.book))
        .filter(BorrowRecord.status == BorrowStatus.BORROWED, BorrowRecord.due_date < today)
        .order_by(BorrowRecord.due_date.asc(), BorrowRecord.id.asc())
        .all()
    )

    results = []
    for record in records:
        record.fine_amount = compute_fine(record.due_date, today, rate)
        results.append(
            FineUpdateResult(
                record_id=record.id,
                user_email=record.user.email,
                book_title=record.book.title,
                days_overdue=days_overdue(record.due_date, today),
                fine_amount=record.fine_amount,
            )
        )
    db.commit()

    logger.info(f"Updated fines for {len(results)} overdue record(s) at {rate}/day")
    return results
