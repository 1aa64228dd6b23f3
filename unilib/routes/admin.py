import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends, Form, Response, status
from sqlalchemy.orm import Session

from unilib.config.db import get_db
from unilib.errors import ValidationError
from unilib.models.models import BorrowStatus
from unilib.routes.router import run
from unilib.schemas.schemas import (
    BookCreate,
    BookOut,
    BookUpdate,
    BorrowRecordOut,
    FineConfigUpdate,
    OverdueFineUpdate,
    SessionClaims,
    UserOut,
    UserRoleUpdate,
    UserStatusUpdate,
)
from unilib.security.auth import get_admin_session
from unilib.services import borrow, catalog, export, fines, recommendations, reminders, reporting, users
from unilib.services.notifications import Notifier, get_notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


def _actor(session: SessionClaims) -> str:
    return session.email or f"user:{session.user_id}"


@router.get("/stats")
def get_stats(session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)):
    """
    Retrieves the dashboard aggregates: users, books, borrows, genres, trends.

    Parameters:
        session (SessionClaims): The admin's session.
        db (Session): The database session.

    Returns:
        dict: The dashboard statistics.

    Raises:
        AuthenticationError: If the caller is not signed in.
        AuthorizationError: If the caller is not an admin.
    """
    return {"success": True, "stats": run(db, reporting.get_admin_dashboard_stats)}


@router.get("/borrow-requests")
def view_borrow_requests(
    status: Optional[BorrowStatus] = None,
    search: str = "",
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
):
    """
    Retrieves borrow records with user and book details, newest first.

    Parameters:
        status (BorrowStatus): Only records in this state.
        search (str): Match on title, author, user name, e-mail or university ID.

    Returns:
        dict: The matching borrow requests.
    """
    requests = run(db, borrow.list_borrow_requests, status=status, search=search)
    return {"success": True, "requests": requests}


@router.post("/borrow-requests/{record_id}/approve")
def approve_request(
    record_id: int, session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)
):
    """
    Approves a PENDING request: the book is checked out and a due date is set.

    Raises:
        NotFoundError: If the record does not exist.
        DomainRuleError: If the request was already processed or no copy is left.
    """
    record = run(db, borrow.approve_borrow, record_id, approved_by=_actor(session))
    return {
        "success": True,
        "message": "Request approved successfully",
        "record": BorrowRecordOut.model_validate(record),
    }


@router.post("/borrow-requests/{record_id}/reject")
def reject_request(
    record_id: int, session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)
):
    """
    Rejects a PENDING request, removing it.

    Raises:
        NotFoundError: If the record does not exist.
        DomainRuleError: If the request was already processed.
    """
    run(db, borrow.reject_borrow, record_id, rejected_by=_actor(session))
    return {"success": True, "message": "Request rejected successfully"}


@router.post("/borrow-requests/{record_id}/return")
def mark_returned(
    record_id: int, session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)
):
    """Marks any BORROWED record as returned on the borrower's behalf."""
    record = run(db, borrow.return_book, record_id, returned_by=_actor(session))
    return {
        "success": True,
        "message": "Book marked as returned",
        "record": BorrowRecordOut.model_validate(record),
    }


@router.get("/fine-config")
def get_fine_config(session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)):
    """Returns the current daily fine amount."""
    return {
        "success": True,
        "fineAmount": run(db, fines.get_daily_fine_amount),
        "message": "Fine configuration loaded.",
    }


@router.post("/fine-config")
def update_fine_config(
    data: FineConfigUpdate,
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
):
    """
    Sets the daily fine amount.

    Parameters:
        data (FineConfigUpdate): ``fineAmount`` >= 0 and an optional ``updatedBy``;
                        the actor defaults to the admin's e-mail.

    Raises:
        ValidationError: If fineAmount is missing, negative or not a number.
    """
    updated_by = (data.updated_by or "").strip() or _actor(session)
    amount = run(db, fines.set_daily_fine_amount, data.fine_amount, updated_by)
    return {
        "success": True,
        "fineAmount": amount,
        "message": "Fine configuration updated successfully.",
    }


@router.post("/update-overdue-fines")
def update_overdue_fines(
    data: Optional[OverdueFineUpdate] = Body(None),
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
):
    """
    Recomputes the fine of every overdue loan.

    Parameters:
        data (OverdueFineUpdate): Optional ``fineAmount`` overriding the stored rate for this run.

    Returns:
        dict: One entry per updated record.
    """
    custom_rate = data.fine_amount if data else None
    results = run(db, fines.update_overdue_fines, custom_rate)
    return {
        "success": True,
        "message": f"Updated fines for {len(results)} overdue record(s).",
        "results": results,
    }


def _reminder_response(results, kind: str):
    sent = sum(1 for result in results if result.status == "sent")
    return {
        "success": True,
        "message": f"Processed {len(results)} {kind} reminder(s). Sent {sent}.",
        "results": [
            {
                "recordId": result.record_id,
                "userEmail": result.user_email,
                "bookTitle": result.book_title,
                "message": "Reminder sent" if result.status == "sent" else "Reminder failed",
                "sent": result.status == "sent",
                "error": result.error,
            }
            for result in results
        ],
    }


@router.post("/send-due-reminders")
def send_due_reminders(
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Reminds borrowers whose books fall due soon. Individual failures are reported, not raised."""
    return _reminder_response(run(db, reminders.send_due_reminders, notifier), "due")


@router.post("/send-overdue-reminders")
def send_overdue_reminders(
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Reminds borrowers of overdue books. Individual failures are reported, not raised."""
    return _reminder_response(run(db, reminders.send_overdue_reminders, notifier), "overdue")


@router.get("/reminder-stats")
def get_reminder_stats(session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)):
    """Counts of due-soon and overdue loans and of reminders sent today."""
    return {"success": True, "stats": run(db, reminders.get_reminder_stats)}


def _parse_date(value: Optional[str], field: str) -> date:
    if not value:
        raise ValidationError("dateFrom and dateTo are required for borrows-range export.", error="Missing date range")
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationError(f"{field} must be a valid date (YYYY-MM-DD).", error="Invalid date range")


@router.post("/export/{export_type}")
def export_data(
    export_type: str,
    export_format: str = Form("csv", alias="format"),
    date_from: Optional[str] = Form(None, alias="dateFrom"),
    date_to: Optional[str] = Form(None, alias="dateTo"),
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
):
    """
    Downloads books, users, borrows, analytics or a borrow date range as CSV or JSON.

    Parameters:
        export_type (str): books, users, borrows, analytics or borrows-range.
        export_format (str): "json" for JSON, anything else for CSV.
        date_from (str): Range start (borrows-range only).
        date_to (str): Inclusive range end (borrows-range only).

    Returns:
        Response: The file as an attachment.

    Raises:
        ValidationError: For an unknown type or a missing/invalid date range.
    """
    if export_type not in export.EXPORT_TYPES:
        raise ValidationError(f"Unsupported export type: {export_type}.", error="Invalid export type")
    fmt = "json" if export_format == "json" else "csv"

    if export_type == "books":
        result = run(db, export.export_books, fmt)
    elif export_type == "users":
        result = run(db, export.export_users, fmt)
    elif export_type == "borrows":
        result = run(db, export.export_borrows, fmt)
    elif export_type == "analytics":
        result = run(db, export.export_analytics, fmt)
    else:
        start = _parse_date(date_from, "dateFrom")
        end = _parse_date(date_to, "dateTo")
        if end < start:
            raise ValidationError("dateTo must not be before dateFrom.", error="Invalid date range")
        result = run(db, export.export_borrows, fmt, date_from=start, date_to=end)

    logger.info(f"{_actor(session)} exported {export_type} as {fmt}")
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "Cache-Control": "no-store",
        },
    )


@router.get("/export-stats")
def get_export_stats(session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)):
    """Row counts available for export."""
    return {"success": True, "stats": run(db, export.get_export_stats)}


@router.post("/generate-recommendations")
def generate_recommendations(
    session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)
):
    """Regenerates recommendations for every approved user and caches them."""
    results = run(db, recommendations.generate_all_user_recommendations)
    total = sum(len(result.recommendations) for result in results)
    return {
        "success": True,
        "results": results,
        "totalUsers": len(results),
        "totalRecommendations": total,
        "message": f"Generated {total} recommendations for {len(results)} users.",
    }


@router.post("/update-trending-books")
def update_trending_books(
    session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)
):
    """Recomputes the trending list from the last 30 days of borrows."""
    trending = run(db, recommendations.update_trending_books)
    return {
        "success": True,
        "message": f"Updated {len(trending)} trending book(s).",
        "trendingCount": len(trending),
    }


@router.post("/refresh-recommendation-cache")
def refresh_recommendation_cache(session: SessionClaims = Depends(get_admin_session)):
    """Drops all cached recommendations and the trending list."""
    cleared = recommendations.refresh_recommendation_cache()
    return {
        "success": True,
        "message": "Recommendation cache cleared.",
        "cacheCleared": cleared,
    }


@router.post("/books", status_code=status.HTTP_201_CREATED)
def create_book(
    data: BookCreate, session: SessionClaims = Depends(get_admin_session), db: Session = Depends(get_db)
):
    """Adds a book to the catalog with all copies available."""
    book = run(db, catalog.create_book, data)
    return {"success": True, "book": BookOut.model_validate(book)}


@router.patch("/books/{book_id}")
def update_book(
    book_id: int,
    data: BookUpdate,
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
):
    """
    Updates book fields. Changing totalCopies keeps the copies on loan accounted for.

    Raises:
        NotFoundError: If the book does not exist.
        ValidationError: If totalCopies drops below the copies on loan.
    """
    book = run(db, catalog.update_book, book_id, data)
    return {"success": True, "book": BookOut.model_validate(book)}


@router.patch("/users/{user_id}/status")
def update_user_status(
    user_id: int,
    data: UserStatusUpdate,
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
):
    """Approves or rejects an account."""
    user = run(db, users.set_user_status, user_id, data.status)
    return {"success": True, "user": UserOut.model_validate(user)}


@router.patch("/users/{user_id}/role")
def update_user_role(
    user_id: int,
    data: UserRoleUpdate,
    session: SessionClaims = Depends(get_admin_session),
    db: Session = Depends(get_db),
):
    """Promotes or demotes an account. Existing tokens keep their old role claim."""
    user = run(db, users.set_user_role, user_id, data.role)
    return {"success": True, "user": UserOut.model_validate(user)}
