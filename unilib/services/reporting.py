"""Read-only aggregates for the admin dashboard."""

import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session

from unilib.config.settings import settings
from unilib.models.models import Book, BorrowRecord, BorrowStatus, User, UserRole, UserStatus
from unilib.schemas.schemas import (
    BookSummary,
    CategoryStat,
    DashboardStats,
    RecentBorrow,
    RecentUser,
    TrendPoint,
)
from unilib.utils import today as utc_today

logger = logging.getLogger(__name__)


def _count_when(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _filled(column):
    return and_(column.isnot(None), column != "")


def get_borrow_trends(db: Session, days: int, today: date):
    """One point per day for the last `days` days, oldest first, zero-filled."""
    start = today - timedelta(days=days - 1)
    start_at = datetime(start.year, start.month, start.day)

    borrows = Counter(
        created.date()
        for (created,) in db.query(BorrowRecord.created_at).filter(BorrowRecord.created_at >= start_at)
    )
    returns = Counter(
        returned
        for (returned,) in db.query(BorrowRecord.return_date).filter(BorrowRecord.return_date >= start)
    )

    return [
        TrendPoint(date=day, borrows=borrows.get(day, 0), returns=returns.get(day, 0))
        for day in (start + timedelta(days=offset) for offset in range(days))
    ]


def get_admin_dashboard_stats(
    db: Session, trend_days: Optional[int] = None, today: Optional[date] = None
) -> DashboardStats:
    today = today or utc_today()
    trend_days = trend_days or settings.trend_days

    total_users, approved_users, pending_users, admin_users = db.query(
        func.count(User.id),
        _count_when(User.status == UserStatus.APPROVED),
        _count_when(User.status == UserStatus.PENDING),
        _count_when(User.role == UserRole.ADMIN),
    ).one()

    (
        total_books,
        total_copies,
        available_copies,
        active_books,
        inactive_books,
        books_with_isbn,
        books_with_publisher,
        average_page_count,
    ) = db.query(
        func.count(Book.id),
        func.coalesce(func.sum(Book.total_copies), 0),
        func.coalesce(func.sum(Book.available_copies), 0),
        _count_when(Book.is_active.is_(True)),
        _count_when(Book.is_active.is_(False)),
        _count_when(_filled(Book.isbn)),
        _count_when(_filled(Book.publisher)),
        func.coalesce(func.avg(Book.page_count), 0),
    ).one()

    active_borrows, pending_borrows, returned_books = db.query(
        _count_when(BorrowRecord.status == BorrowStatus.BORROWED),
        _count_when(BorrowRecord.status == BorrowStatus.PENDING),
        _count_when(BorrowRecord.status == BorrowStatus.RETURNED),
    ).one()

    recent_borrows = (
        db.query(BorrowRecord.id, Book.title, User.full_name, BorrowRecord.status)
        .join(User, BorrowRecord.user_id == User.id)
        .join(Book, BorrowRecord.book_id == Book.id)
        .order_by(BorrowRecord.created_at.desc(), BorrowRecord.id.desc())
        .limit(5)
        .all()
    )
    recent_users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(5).all()

    category_rows = (
        db.query(
            Book.genre,
            func.count(Book.id),
            func.coalesce(func.sum(Book.total_copies), 0),
            func.coalesce(func.sum(Book.available_copies), 0),
            func.coalesce(func.avg(Book.rating), 0),
        )
        .filter(_filled(Book.genre))
        .group_by(Book.genre)
        .order_by(func.count(Book.id).desc(), Book.genre.asc())
        .limit(8)
        .all()
    )

    year_rows = (
        db.query(Book.publication_year, func.count(Book.id))
        .filter(Book.publication_year.isnot(None))
        .group_by(Book.publication_year)
        .order_by(Book.publication_year.desc())
        .limit(10)
        .all()
    )
    language_rows = (
        db.query(Book.language, func.count(Book.id))
        .filter(_filled(Book.language))
        .group_by(Book.language)
        .order_by(func.count(Book.id).desc(), Book.language.asc())
        .limit(6)
        .all()
    )
    top_rated = (
        db.query(Book)
        .filter(Book.is_active.is_(True))
        .order_by(Book.rating.desc(), Book.created_at.desc())
        .limit(6)
        .all()
    )

    total_copies = int(total_copies)
    available_copies = int(available_copies)
    return DashboardStats(
        total_users=total_users,
        approved_users=approved_users,
        pending_users=pending_users,
        admin_users=admin_users,
        total_books=total_books,
        total_copies=total_copies,
        available_copies=available_copies,
        borrowed_copies=max(total_copies - available_copies, 0),
        active_books=active_books,
        inactive_books=inactive_books,
        books_with_isbn=books_with_isbn,
        books_with_publisher=books_with_publisher,
        average_page_count=round(float(average_page_count)),
        active_borrows=active_borrows,
        pending_borrows=pending_borrows,
        returned_books=returned_books,
        recent_borrows=[
            RecentBorrow(id=record_id, book_title=title, user_name=name, status=status)
            for record_id, title, name, status in recent_borrows
        ],
        recent_users=[RecentUser.model_validate(user) for user in recent_users],
        category_stats=[
            CategoryStat(
                genre=genre or "Uncategorized",
                count=count,
                total_copies=int(copies),
                available_copies=int(available),
                avg_rating=round(float(avg_rating), 1),
            )
            for genre, count, copies, available, avg_rating in category_rows
        ],
        # oldest first for charting
        books_by_year=[(str(year), count) for year, count in reversed(year_rows)],
        books_by_language=[(language or "Unknown", count) for language, count in language_rows],
        top_rated_books=[BookSummary.model_validate(book) for book in top_rated],
        borrow_trends=get_borrow_trends(db, trend_days, today),
    )
