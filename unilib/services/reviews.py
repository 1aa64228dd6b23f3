import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from unilib.errors import DomainRuleError
from unilib.models.models import BorrowRecord, BorrowStatus, Review, User
from unilib.schemas.schemas import ReviewCreate, ReviewEligibility, ReviewOut
from unilib.services.catalog import get_book

logger = logging.getLogger(__name__)


def get_review_eligibility(db: Session, user_id: int, book_id: int) -> ReviewEligibility:
    statuses = {
        status
        for (status,) in db.query(BorrowRecord.status)
        .filter(BorrowRecord.user_id == user_id, BorrowRecord.book_id == book_id)
        .all()
    }
    has_existing_review = (
        db.query(Review.id).filter(Review.user_id == user_id, Review.book_id == book_id).first()
        is not None
    )
    has_returned_borrow = BorrowStatus.RETURNED in statuses

    if has_existing_review:
        reason = "You have already reviewed this book"
    elif not has_returned_borrow:
        reason = "You must have borrowed this book to review it"
    else:
        reason = "You can review this book"

    return ReviewEligibility(
        can_review=has_returned_borrow and not has_existing_review,
        has_existing_review=has_existing_review,
        is_currently_borrowed=BorrowStatus.BORROWED in statuses,
        reason=reason,
    )


def create_review(db: Session, user_id: int, book_id: int, data: ReviewCreate) -> Review:
    get_book(db, book_id)
    eligibility = get_review_eligibility(db, user_id, book_id)
    if not eligibility.can_review:
        raise DomainRuleError(eligibility.reason, error="Not eligible to review")

    review = Review(user_id=user_id, book_id=book_id, rating=data.rating, comment=data.comment.strip())
    db.add(review)
    try:
        db.commit()
    except IntegrityError:
        # concurrent submission for the same (user, book)
        db.rollback()
        raise DomainRuleError("You have already reviewed this book", error="Not eligible to review")
    db.refresh(review)
    logger.info(f"Review {review.id} created: user={user_id} book={book_id} rating={review.rating}")
    return review


def list_reviews(db: Session, book_id: int) -> List[ReviewOut]:
    get_book(db, book_id)
    rows = (
        db.query(Review, User.full_name)
        .join(User, Review.user_id == User.id)
        .filter(Review.book_id == book_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )
    return [
        ReviewOut(
            id=review.id,
            rating=review.rating,
            comment=review.comment,
            created_at=review.created_at,
            user_full_name=full_name,
        )
        for review, full_name in rows
    ]
