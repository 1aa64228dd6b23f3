"""Borrow lifecycle: PENDING -> BORROWED -> RETURNED.

Record status and copy counts only ever change through conditional UPDATE
statements in one transaction, so two requests racing for the same record or
the last copy cannot both succeed.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import cast, or_, String
from sqlalchemy.orm import Session

from unilib.config.settings import settings
from unilib.errors import AuthorizationError, DomainRuleError, NotFoundError
from unilib.models.models import Book, BorrowRecord, BorrowStatus, User, UserStatus
from unilib.schemas.schemas import BorrowRequestOut
from unilib.services.fines import compute_fine, get_daily_fine_amount
from unilib.utils import today as utc_today

logger = logging.getLogger(__name__)

OPEN_STATUSES = (BorrowStatus.PENDING, BorrowStatus.BORROWED)


def _get_record(db: Session, record_id: int) -> BorrowRecord:
    record = db.query(BorrowRecord).filter(BorrowRecord.id == record_id).first()
    if not record:
        raise NotFoundError("Borrow record not found")
    return record


def _take_copy(db: Session, book_id: int) -> bool:
    updated = (
        db.query(Book)
        .filter(Book.id == book_id, Book.available_copies > 0)
        .update({Book.available_copies: Book.available_copies - 1}, synchronize_session=False)
    )
    return updated == 1


def _put_back_copy(db: Session, book_id: int) -> bool:
    updated = (
        db.query(Book)
        .filter(Book.id == book_id, Book.available_copies < Book.total_copies)
        .update({Book.available_copies: Book.available_copies + 1}, synchronize_session=False)
    )
    return updated == 1


def _transition(db: Session, record_id: int, from_status: BorrowStatus, values: dict, *conditions) -> bool:
    """Moves a record out of `from_status` in one conditional UPDATE; False if it was no longer there."""
    updated = (
        db.query(BorrowRecord)
        .filter(BorrowRecord.id == record_id, BorrowRecord.status == from_status, *conditions)
        .update(values, synchronize_session=False)
    )
    return updated == 1


def _refuse(db: Session, record_id: int, message: str):
    db.rollback()
    status = db.query(BorrowRecord.status).filter(BorrowRecord.id == record_id).scalar()
    if status is None:
        raise NotFoundError("Borrow record not found")
    raise DomainRuleError(message.format(status=status.value))


def request_borrow(db: Session, user_id: int, book_id: int) -> BorrowRecord:
    """
    Creates a PENDING borrow request.

    Raises:
        NotFoundError: If the user or book does not exist.
        DomainRuleError: If the user is not approved, the book is inactive or has
            no copies left, or the user already has an open record for it.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    book = db.query(Book).filter(Book.id == book_id).first()
    if not book:
        raise NotFoundError("Book not found")

    if user.status != UserStatus.APPROVED:
        raise DomainRuleError("Your account must be approved before borrowing books")
    if not book.is_active:
        raise DomainRuleError("This book is not available for borrowing")
    if book.available_copies <= 0:
        raise DomainRuleError("No copies available")

    open_record = (
        db.query(BorrowRecord.id)
        .filter(
            BorrowRecord.user_id == user_id,
            BorrowRecord.book_id == book_id,
            BorrowRecord.status.in_(OPEN_STATUSES),
        )
        .first()
    )
    if open_record:
        raise DomainRuleError("You already have an open borrow request for this book")

    record = BorrowRecord(
        user_id=user_id,
        book_id=book_id,
        borrow_date=utc_today(),
        status=BorrowStatus.PENDING,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(f"Borrow request {record.id} created: user={user_id} book={book_id}")
    return record


def approve_borrow(
    db: Session, record_id: int, approved_by: Optional[str] = None, today: Optional[date] = None
) -> BorrowRecord:
    """PENDING -> BORROWED, taking one copy off the shelf."""
    today = today or utc_today()
    record = _get_record(db, record_id)

    claimed = _transition(
        db,
        record.id,
        BorrowStatus.PENDING,
        {
            BorrowRecord.status: BorrowStatus.BORROWED,
            BorrowRecord.borrow_date: today,
            BorrowRecord.due_date: today + timedelta(days=settings.loan_period_days),
            BorrowRecord.borrowed_by: approved_by,
        },
    )
    if not claimed:
        _refuse(db, record_id, "Request already processed (status {status})")
    if not _take_copy(db, record.book_id):
        db.rollback()
        raise DomainRuleError("No copies available")

    db.commit()
    db.refresh(record)
    logger.info(f"Borrow record {record.id} approved by {approved_by}, due {record.due_date}")
    return record


def reject_borrow(db: Session, record_id: int, rejected_by: Optional[str] = None) -> None:
    """Drops a PENDING request; no copy was ever taken for it."""
    record = _get_record(db, record_id)
    deleted = (
        db.query(BorrowRecord)
        .filter(BorrowRecord.id == record.id, BorrowRecord.status == BorrowStatus.PENDING)
        .delete(synchronize_session=False)
    )
    if deleted != 1:
        _refuse(db, record_id, "Request already processed (status {status})")
    db.commit()
    logger.info(f"Borrow request {record_id} rejected by {rejected_by}")


def return_book(
    db: Session,
    record_id: int,
    returned_by: Optional[str] = None,
    user_id: Optional[int] = None,
    today: Optional[date] = None,
) -> BorrowRecord:
    """
    BORROWED -> RETURNED, putting the copy back and settling the fine.

    Parameters:
        record_id (int): The borrow record to close.
        returned_by (str): Actor recorded on the record.
        user_id (int): When given, the record must belong to this user.
        today (date): Return date; defaults to the current UTC day.
    """
    today = today or utc_today()
    record = _get_record(db, record_id)
    if user_id is not None and record.user_id != user_id:
        raise AuthorizationError("You can only return your own books")

    fine = compute_fine(record.due_date or today, today, get_daily_fine_amount(db))
    claimed = _transition(
        db,
        record.id,
        BorrowStatus.BORROWED,
        {
            BorrowRecord.status: BorrowStatus.RETURNED,
            BorrowRecord.return_date: today,
            BorrowRecord.returned_by: returned_by,
            BorrowRecord.fine_amount: fine,
        },
    )
    if not claimed:
        _refuse(db, record_id, "Only borrowed books can be returned (status {status})")
    if not _put_back_copy(db, record.book_id):
        logger.warning(f"Book {record.book_id} already at total copies while returning record {record.id}")

    db.commit()
    db.refresh(record)
    logger.info(f"Borrow record {record.id} returned, fine {record.fine_amount}")
    return record


def renew_borrow(
    db: Session, record_id: int, user_id: Optional[int] = None, today: Optional[date] = None
) -> BorrowRecord:
    """Extends a loan by one loan period, up to settings.max_renewals times."""
    today = today or utc_today()
    record = _get_record(db, record_id)
    if user_id is not None and record.user_id != user_id:
        raise AuthorizationError("You can only renew your own books")
    if record.status != BorrowStatus.BORROWED:
        raise DomainRuleError("Only borrowed books can be renewed")
    if record.due_date < today:
        raise DomainRuleError("Overdue books cannot be renewed")
    if record.renewal_count >= settings.max_renewals:
        raise DomainRuleError(f"Renewal limit of {settings.max_renewals} reached")

    # the loan must still be exactly as read above
    claimed = _transition(
        db,
        record.id,
        BorrowStatus.BORROWED,
        {
            BorrowRecord.due_date: record.due_date + timedelta(days=settings.loan_period_days),
            BorrowRecord.renewal_count: record.renewal_count + 1,
        },
        BorrowRecord.due_date == record.due_date,
        BorrowRecord.renewal_count == record.renewal_count,
    )
    if not claimed:
        _refuse(db, record_id, "Loan changed while renewing (status {status}), please try again")

    db.commit()
    db.refresh(record)
    logger.info(f"Borrow record {record.id} renewed ({record.renewal_count}), due {record.due_date}")
    return record


def list_user_borrows(db: Session, user_id: int, book_id: Optional[int] = None) -> List[BorrowRecord]:
    query = db.query(BorrowRecord).filter(BorrowRecord.user_id == user_id)
    if book_id is not None:
        query = query.filter(BorrowRecord.book_id == book_id)
    return query.order_by(BorrowRecord.created_at.desc(), BorrowRecord.id.desc()).all()


def list_borrow_requests(
    db: Session, status: Optional[BorrowStatus] = None, search: str = ""
) -> List[BorrowRequestOut]:
    """Admin view of borrow records joined with user and book details."""
    query = (
        db.query(BorrowRecord, User, Book)
        .join(User, BorrowRecord.user_id == User.id)
        .join(Book, BorrowRecord.book_id == Book.id)
    )
    if status is not None:
        query = query.filter(BorrowRecord.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Book.title.ilike(pattern),
                Book.author.ilike(pattern),
                User.full_name.ilike(pattern),
                User.email.ilike(pattern),
                cast(User.university_id, String).ilike(pattern),
            )
        )

    rows = query.order_by(BorrowRecord.created_at.desc(), BorrowRecord.id.desc()).all()
    return [
        BorrowRequestOut(
            **_record_fields(record),
            user_name=user.full_name,
            user_email=user.email,
            user_university_id=user.university_id,
            book_title=book.title,
            book_author=book.author,
            book_genre=book.genre,
            book_cover_url=book.cover_url,
        )
        for record, user, book in rows
    ]


def _record_fields(record: BorrowRecord) -> dict:
    return {
        column.name: getattr(record, column.name)
        for column in BorrowRecord.__table__.columns
        if column.name != "updated_at"
    }
