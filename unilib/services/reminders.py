"""Due-soon and overdue reminders.

A failed delivery is recorded in the batch result and the batch moves on.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from unilib.config.settings import settings
from unilib.models.models import BorrowRecord, BorrowStatus
from unilib.schemas.schemas import ReminderResult, ReminderStats
from unilib.services.fines import compute_fine, days_overdue, get_daily_fine_amount
from unilib.services.notifications import Notifier
from unilib.utils import utcnow

logger = logging.getLogger(__name__)


def _day_bounds(day: date):
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def _not_reminded_today(today: date):
    start, _ = _day_bounds(today)
    return (BorrowRecord.last_reminder_sent.is_(None)) | (BorrowRecord.last_reminder_sent < start)


def _dispatch(
    db: Session, records: List[BorrowRecord], notifier: Notifier, compose, today: date
) -> List[ReminderResult]:
    sent_at = datetime.combine(today, utcnow().time())
    results = []
    for record in records:
        record_id, email, title = record.id, record.user.email, record.book.title
        try:
            subject, body = compose(record)
            notifier.send(email, subject, body)
            record.last_reminder_sent = sent_at
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.warning(f"Reminder for borrow record {record_id} failed: {exc}")
            results.append(
                ReminderResult(
                    record_id=record_id,
                    user_email=email,
                    book_title=title,
                    status="failed",
                    error=str(exc) or exc.__class__.__name__,
                )
            )
            continue

        results.append(
            ReminderResult(record_id=record_id, user_email=email, book_title=title, status="sent")
        )

    sent = sum(1 for result in results if result.status == "sent")
    logger.info(f"Processed {len(results)} reminder(s), sent {sent}")
    return results


def _borrowed_records(db: Session, *conditions) -> List[BorrowRecord]:
    return (
        db.query(BorrowRecord)
        .options(joinedload(BorrowRecord.user), joinedload(BorrowRecord.book))
        .filter(BorrowRecord.status == BorrowStatus.BORROWED, *conditions)
        .order_by(BorrowRecord.due_date.asc(), BorrowRecord.id.asc())
        .all()
    )


def send_due_reminders(
    db: Session, notifier: Notifier, today: Optional[date] = None
) -> List[ReminderResult]:
    """Remind borrowers whose books are due within settings.due_soon_days."""
    today = today or utcnow().date()
    horizon = today + timedelta(days=settings.due_soon_days)
    records = _borrowed_records(
        db,
        BorrowRecord.due_date >= today,
        BorrowRecord.due_date <= horizon,
        _not_reminded_today(today),
    )

    def compose(record: BorrowRecord):
        days_left = (record.due_date - today).days
        when = "today" if days_left == 0 else f"in {days_left} day(s)"
        return (
            f"Reminder: \"{record.book.title}\" is due {when}",
            f"Hi {record.user.full_name},\n\n"
            f"\"{record.book.title}\" is due back on {record.due_date.isoformat()}. "
            f"Please return or renew it to avoid fines.\n",
        )

    return _dispatch(db, records, notifier, compose, today)


def send_overdue_reminders(
    db: Session, notifier: Notifier, today: Optional[date] = None
) -> List[ReminderResult]:
    """Remind borrowers whose books are past due, quoting the current fine."""
    today = today or utcnow().date()
    records = _borrowed_records(db, BorrowRecord.due_date < today, _not_reminded_today(today))
    rate = get_daily_fine_amount(db)

    def compose(record: BorrowRecord):
        late = days_overdue(record.due_date, today)
        fine = compute_fine(record.due_date, today, rate)
        return (
            f"Overdue: \"{record.book.title}\"",
            f"Hi {record.user.full_name},\n\n"
            f"\"{record.book.title}\" was due on {record.due_date.isoformat()} and is "
            f"{late} day(s) overdue. Your current fine is {fine}.\n",
        )

    return _dispatch(db, records, notifier, compose, today)


def get_reminder_stats(db: Session, today: Optional[date] = None) -> ReminderStats:
    today = today or utcnow().date()
    horizon = today + timedelta(days=settings.due_soon_days)
    start, end = _day_bounds(today)

    def count(*conditions) -> int:
        return db.query(func.count(BorrowRecord.id)).filter(*conditions).scalar() or 0

    return ReminderStats(
        due_soon=count(
            BorrowRecord.status == BorrowStatus.BORROWED,
            BorrowRecord.due_date >= today,
            BorrowRecord.due_date <= horizon,
        ),
        overdue=count(BorrowRecord.status == BorrowStatus.BORROWED, BorrowRecord.due_date < today),
        reminders_sent_today=count(
            BorrowRecord.last_reminder_sent >= start, BorrowRecord.last_reminder_sent < end
        ),
    )
