from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from unilib.config.db import get_db, with_db_retry
from unilib.models.models import User
from unilib.schemas.schemas import (
    BookOut,
    BorrowCreate,
    BorrowRecordOut,
    ReviewCreate,
    ReviewOut,
    UserCreate,
    UserOut,
)
from unilib.security.auth import create_access_token, get_current_user
from unilib.services import borrow, catalog, recommendations, reviews, users

router = APIRouter()


def run(db: Session, operation, *args, **kwargs):
    """Calls a service with the request's session under the transient-error retry."""
    return with_db_retry(lambda: operation(db, *args, **kwargs), session=db)


@router.post("/auth/sign-up", status_code=status.HTTP_201_CREATED)
def sign_up(data: UserCreate, db: Session = Depends(get_db)):
    """
    Registers a new account. Accounts start PENDING until an admin approves them.

    Parameters:
        data (UserCreate): Full name, e-mail, university ID and password.
        db (Session): The database session.

    Returns:
        dict: The created user.

    Raises:
        ValidationError: If the e-mail format is invalid.
        DomainRuleError: If the e-mail or university ID is already registered.
    """
    user = run(db, users.register_user, data)
    return {"success": True, "user": UserOut.model_validate(user)}


@router.post("/auth/sign-in")
def sign_in(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    Exchanges e-mail (sent as ``username``) and password for a bearer token.

    The token carries the user's role at sign-in time; admin routes re-check
    the stored role when the claim is not ADMIN.

    Raises:
        AuthenticationError: If the credentials are invalid.
    """
    user = run(db, users.authenticate_user, form.username, form.password)
    return {
        "success": True,
        "access_token": create_access_token(user),
        "token_type": "bearer",
        "user": UserOut.model_validate(user),
    }


@router.get("/me")
def read_profile(current_user: User = Depends(get_current_user)):
    """Returns the signed-in user's profile."""
    return {"success": True, "user": UserOut.model_validate(current_user)}


@router.get("/books")
def get_books(
    search: str = "",
    genre: str = "",
    availability: str = Query("", pattern="^(available|unavailable)?$"),
    rating: Optional[float] = Query(None, ge=0, le=5),
    sort: str = Query("title", pattern="^(title|author|rating|date)$"),
    page: int = Query(1, ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Retrieves one page of the catalog.

    Parameters:
        search (str): Case-insensitive match on title or author.
        genre (str): Exact genre.
        availability (str): "available" or "unavailable".
        rating (float): Minimum rating.
        sort (str): title, author, rating or date.
        page (int): 1-based page number.

    Returns:
        dict: The books on the page plus pagination details.
    """
    result = run(
        db,
        catalog.list_books,
        search=search,
        genre=genre,
        availability=availability,
        min_rating=rating,
        sort=sort,
        page=page,
    )
    return {"success": True, "books": result.books, "pagination": result.pagination}


@router.get("/books/genres")
def get_genres(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Lists the distinct genres in the catalog, alphabetically."""
    return {"success": True, "genres": run(db, catalog.list_genres)}


@router.get("/books/trending")
def get_trending_books(current_user: User = Depends(get_current_user)):
    """Returns the trending list computed by the last admin refresh."""
    return {"success": True, "books": recommendations.recommendation_cache.trending}


@router.get("/books/{book_id}")
def get_book(book_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Retrieves a single book.

    Raises:
        NotFoundError: If the book does not exist.
    """
    book = run(db, catalog.get_book, book_id)
    return {"success": True, "book": BookOut.model_validate(book)}


@router.get("/books/{book_id}/stats")
def get_book_stats(book_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Total, active and returned borrow counts for one book."""
    return {"success": True, "stats": run(db, catalog.get_book_borrow_stats, book_id)}


@router.get("/books/{book_id}/reviews")
def get_book_reviews(book_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Lists the reviews of a book, newest first."""
    return {"success": True, "reviews": run(db, reviews.list_reviews, book_id)}


@router.get("/books/{book_id}/review-eligibility")
def get_review_eligibility(
    book_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """
    Tells whether the signed-in user may review the book.

    Returns:
        dict: canReview, hasExistingReview, isCurrentlyBorrowed and a reason.
    """
    eligibility = run(db, reviews.get_review_eligibility, current_user.id, book_id)
    return {"success": True, **eligibility.model_dump(by_alias=True)}


@router.post("/books/{book_id}/reviews", status_code=status.HTTP_201_CREATED)
def create_review(
    book_id: int,
    data: ReviewCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Posts a review. Requires a returned loan of the book and no earlier review.

    Raises:
        NotFoundError: If the book does not exist.
        DomainRuleError: If the user is not eligible.
    """
    review = run(db, reviews.create_review, current_user.id, book_id, data)
    return {
        "success": True,
        "review": ReviewOut(
            id=review.id,
            rating=review.rating,
            comment=review.comment,
            created_at=review.created_at,
            user_full_name=current_user.full_name,
        ),
    }


@router.post("/borrow-records", status_code=status.HTTP_201_CREATED)
def request_borrow(
    data: BorrowCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Submits a borrow request for a book. An admin must approve it.

    Parameters:
        data (BorrowCreate): The book to borrow.
        current_user (User): The currently authenticated user.
        db (Session): The database session.

    Returns:
        dict: The PENDING borrow record.

    Raises:
        NotFoundError: If the book does not exist.
        DomainRuleError: If the account is not approved, no copies are
                        available, or an open request already exists.
    """
    record = run(db, borrow.request_borrow, current_user.id, data.book_id)
    return {
        "success": True,
        "message": "Borrow request submitted",
        "record": BorrowRecordOut.model_validate(record),
    }


@router.get("/borrow-records")
def get_my_borrows(
    book_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Lists the signed-in user's borrow records, newest first, optionally for one book."""
    records = run(db, borrow.list_user_borrows, current_user.id, book_id)
    return {"success": True, "records": [BorrowRecordOut.model_validate(record) for record in records]}


@router.post("/borrow-records/{record_id}/return")
def return_book(
    record_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """
    Returns a borrowed book and settles its fine.

    Raises:
        NotFoundError: If the record does not exist.
        AuthorizationError: If the record belongs to someone else.
        DomainRuleError: If the record is not BORROWED.
    """
    record = run(
        db, borrow.return_book, record_id, returned_by=current_user.email, user_id=current_user.id
    )
    return {
        "success": True,
        "message": "Book returned",
        "record": BorrowRecordOut.model_validate(record),
    }


@router.post("/borrow-records/{record_id}/renew")
def renew_book(
    record_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """
    Extends the due date of a loan by one loan period.

    Raises:
        DomainRuleError: If the loan is overdue, not BORROWED, or out of renewals.
    """
    record = run(db, borrow.renew_borrow, record_id, user_id=current_user.id)
    return {
        "success": True,
        "message": "Loan renewed",
        "record": BorrowRecordOut.model_validate(record),
    }


@router.get("/recommendations")
def get_recommendations(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Books recommended for the signed-in user."""
    books = run(db, recommendations.get_user_recommendations, current_user.id)
    return {"success": True, "books": books}
