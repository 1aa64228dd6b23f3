import logging
import math
from typing import List, Optional

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from unilib.config.settings import settings
from unilib.errors import NotFoundError, ValidationError
from unilib.models.models import Book, BorrowRecord, BorrowStatus
from unilib.schemas.schemas import (
    BookBorrowStats,
    BookCreate,
    BookOut,
    BookPage,
    BookUpdate,
    Pagination,
)

logger = logging.getLogger(__name__)

SORT_ORDERS = {
    "title": Book.title.asc(),
    "author": Book.author.asc(),
    "rating": Book.rating.desc(),
    "date": Book.created_at.desc(),
}


def list_books(
    db: Session,
    search: str = "",
    genre: str = "",
    availability: str = "",
    min_rating: Optional[float] = None,
    sort: str = "title",
    page: int = 1,
    page_size: Optional[int] = None,
) -> BookPage:
    """Filtered, sorted and paginated catalog listing."""
    page_size = page_size or settings.page_size
    page = max(1, page)

    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Book.title.ilike(pattern), Book.author.ilike(pattern)))
    if genre:
        conditions.append(Book.genre == genre)
    if availability == "available":
        conditions.append(Book.available_copies > 0)
    elif availability == "unavailable":
        conditions.append(Book.available_copies == 0)
    if min_rating is not None:
        conditions.append(Book.rating >= min_rating)

    total = db.query(func.count(Book.id)).filter(*conditions).scalar() or 0
    books = (
        db.query(Book)
        .filter(*conditions)
        .order_by(SORT_ORDERS.get(sort, SORT_ORDERS["title"]), Book.id)
        .limit(page_size)
        .offset((page - 1) * page_size)
        .all()
    )

    return BookPage(
        books=[BookOut.model_validate(book) for book in books],
        pagination=Pagination(
            current_page=page,
            total_pages=max(1, math.ceil(total / page_size)),
            total_books=total,
            books_per_page=page_size,
        ),
    )


def list_genres(db: Session) -> List[str]:
    rows = db.query(Book.genre).distinct().order_by(Book.genre.asc()).all()
    return [genre for (genre,) in rows if genre]


def get_book(db: Session, book_id: int) -> Book:
    book = db.query(Book).filter(Book.id == book_id).first()
    if not book:
        raise NotFoundError("Book not found")
    return book


def create_book(db: Session, data: BookCreate) -> Book:
    book = Book(**data.model_dump(), available_copies=data.total_copies)
    db.add(book)
    db.commit()
    db.refresh(book)
    logger.info(f"Book {book.id} created: {book.title!r} ({book.total_copies} copies)")
    return book


def update_book(db: Session, book_id: int, data: BookUpdate) -> Book:
    """Partial update; a change of total_copies shifts available_copies by the same amount."""
    book = get_book(db, book_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)

    if "total_copies" in changes:
        on_loan = book.total_copies - book.available_copies
        if changes["total_copies"] < on_loan:
            raise ValidationError(
                f"total_copies cannot be lower than the {on_loan} copies currently on loan"
            )
        book.available_copies = changes["total_copies"] - on_loan

    for field, value in changes.items():
        setattr(book, field, value)

    db.commit()
    db.refresh(book)
    logger.info(f"Book {book.id} updated: {sorted(changes)}")
    return book


def get_book_borrow_stats(db: Session, book_id: int) -> BookBorrowStats:
    get_book(db, book_id)
    total, active, returned = (
        db.query(
            func.count(BorrowRecord.id),
            func.coalesce(func.sum(case((BorrowRecord.status == BorrowStatus.BORROWED, 1), else_=0)), 0),
            func.coalesce(func.sum(case((BorrowRecord.status == BorrowStatus.RETURNED, 1), else_=0)), 0),
        )
        .filter(BorrowRecord.book_id == book_id)
        .one()
    )
    return BookBorrowStats(
        total_borrows=total or 0, active_borrows=active or 0, returned_borrows=returned or 0
    )
