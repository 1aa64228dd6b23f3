import csv
import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from io import StringIO
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from unilib.errors import ValidationError
from unilib.models.models import Book, BorrowRecord, BorrowStatus, User
from unilib.schemas.schemas import ExportStats
from unilib.services.reporting import get_admin_dashboard_stats
from unilib.utils import today as utc_today

logger = logging.getLogger(__name__)

EXPORT_TYPES = ("books", "users", "borrows", "analytics", "borrows-range")
EXPORT_FORMATS = ("csv", "json")

CONTENT_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
}

BOOK_COLUMNS = [
    "id", "title", "author", "genre", "rating", "total_copies", "available_copies",
    "is_active", "isbn", "publisher", "publication_year", "language", "page_count", "created_at",
]
USER_COLUMNS = ["id", "full_name", "email", "university_id", "status", "role", "created_at"]
BORROW_COLUMNS = [
    "id", "user_id", "user_email", "book_id", "book_title", "status", "borrow_date", "due_date",
    "return_date", "fine_amount", "renewal_count", "created_at",
]


@dataclass
class ExportResult:
    data: str
    content_type: str
    filename: str


def _plain(value: Any) -> Any:
    if hasattr(value, "value"):  # enums
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def _render(rows: List[Dict[str, Any]], columns: Sequence[str], fmt: str, name: str) -> ExportResult:
    rows = [{column: _plain(row.get(column)) for column in columns} for row in rows]
    if fmt == "json":
        data = json.dumps(rows, indent=2)
    else:
        output = StringIO()
        writer = csv.DictWriter(output, fieldnames=list(columns))
        writer.writeheader()
        writer.writerows(rows)
        data = output.getvalue()

    filename = f"{name}-{utc_today().isoformat()}.{fmt}"
    logger.info(f"Exported {len(rows)} row(s) to {filename}")
    return ExportResult(data=data, content_type=CONTENT_TYPES[fmt], filename=filename)


def _check_format(fmt: str) -> str:
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {fmt}")
    return fmt


def export_books(db: Session, fmt: str = "csv") -> ExportResult:
    _check_format(fmt)
    books = db.query(Book).order_by(Book.id.asc()).all()
    rows = [{column: getattr(book, column) for column in BOOK_COLUMNS} for book in books]
    return _render(rows, BOOK_COLUMNS, fmt, "books-export")


def export_users(db: Session, fmt: str = "csv") -> ExportResult:
    """Never includes password hashes."""
    _check_format(fmt)
    users = db.query(User).order_by(User.id.asc()).all()
    rows = [{column: getattr(user, column) for column in USER_COLUMNS} for user in users]
    return _render(rows, USER_COLUMNS, fmt, "users-export")


def export_borrows(
    db: Session, fmt: str = "csv", date_from: Optional[date] = None, date_to: Optional[date] = None
) -> ExportResult:
    """
    Exports borrow records, optionally limited to a borrow_date range.

    Parameters:
        fmt (str): "csv" or "json".
        date_from (date): First borrow date to include.
        date_to (date): Last borrow date to include (inclusive).
    """
    _check_format(fmt)
    query = (
        db.query(BorrowRecord, User.email, Book.title)
        .join(User, BorrowRecord.user_id == User.id)
        .join(Book, BorrowRecord.book_id == Book.id)
    )
    if date_from is not None:
        query = query.filter(BorrowRecord.borrow_date >= date_from)
    if date_to is not None:
        query = query.filter(BorrowRecord.borrow_date < date_to + timedelta(days=1))

    rows = []
    for record, email, title in query.order_by(BorrowRecord.id.asc()).all():
        row = {column: getattr(record, column, None) for column in BORROW_COLUMNS}
        row.update(user_email=email, book_title=title)
        rows.append(row)

    name = "borrows-export"
    if date_from is not None and date_to is not None:
        name = f"borrows-{date_from.isoformat()}-to-{date_to.isoformat()}"
    return _render(rows, BORROW_COLUMNS, fmt, name)


def export_analytics(db: Session, fmt: str = "csv") -> ExportResult:
    """Dashboard figures; CSV flattens them to metric/value rows."""
    _check_format(fmt)
    stats = get_admin_dashboard_stats(db)
    filename = f"analytics-export-{utc_today().isoformat()}.{fmt}"

    if fmt == "json":
        data = stats.model_dump_json(by_alias=True, indent=2)
        return ExportResult(data=data, content_type=CONTENT_TYPES[fmt], filename=filename)

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["metric", "value"])
    for key, value in stats.model_dump(by_alias=True).items():
        if isinstance(value, (int, float)):
            writer.writerow([key, value])
    for category in stats.category_stats:
        writer.writerow([f"genre:{category.genre}", category.count])
    for point in stats.borrow_trends:
        writer.writerow([f"borrows:{point.date.isoformat()}", point.borrows])
        writer.writerow([f"returns:{point.date.isoformat()}", point.returns])
    return ExportResult(data=output.getvalue(), content_type=CONTENT_TYPES[fmt], filename=filename)


def get_export_stats(db: Session) -> ExportStats:
    return ExportStats(
        total_books=db.query(func.count(Book.id)).scalar() or 0,
        total_users=db.query(func.count(User.id)).scalar() or 0,
        total_borrows=db.query(func.count(BorrowRecord.id)).scalar() or 0,
        active_borrows=db.query(func.count(BorrowRecord.id))
        .filter(BorrowRecord.status == BorrowStatus.BORROWED)
        .scalar()
        or 0,
    )
