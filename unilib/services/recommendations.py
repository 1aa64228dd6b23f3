import logging
from datetime import date, datetime, timedelta
from threading import RLock
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from unilib.models.models import Book, BorrowRecord, User, UserStatus
from unilib.schemas.schemas import BookSummary, TrendingBook, UserRecommendations
from unilib.utils import today as utc_today

logger = logging.getLogger(__name__)


class RecommendationCache:
    """Per-user recommendations and the trending list, kept in process memory."""

    def __init__(self):
        self._lock = RLock()
        self._by_user: Dict[int, List[BookSummary]] = {}
        self._trending: List[TrendingBook] = []

    def get(self, user_id: int) -> Optional[List[BookSummary]]:
        with self._lock:
            return self._by_user.get(user_id)

    def put(self, user_id: int, books: List[BookSummary]) -> None:
        with self._lock:
            self._by_user[user_id] = books

    @property
    def trending(self) -> List[TrendingBook]:
        with self._lock:
            return list(self._trending)

    def set_trending(self, books: List[TrendingBook]) -> None:
        with self._lock:
            self._trending = list(books)

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._by_user) + (1 if self._trending else 0)
            self._by_user.clear()
            self._trending = []
            return cleared


recommendation_cache = RecommendationCache()


def recommend_for_user(db: Session, user_id: int, limit: int = 5) -> List[BookSummary]:
    """Best-rated active books in the genres the user has borrowed, minus books already borrowed.

    Users without history get the best-rated active books overall.
    """
    borrowed = select(BorrowRecord.book_id).where(BorrowRecord.user_id == user_id)
    genres = [
        genre
        for (genre,) in db.query(Book.genre)
        .join(BorrowRecord, BorrowRecord.book_id == Book.id)
        .filter(BorrowRecord.user_id == user_id)
        .distinct()
    ]

    query = db.query(Book).filter(Book.is_active.is_(True), Book.id.notin_(borrowed))
    if genres:
        query = query.filter(Book.genre.in_(genres))
    books = query.order_by(Book.rating.desc(), Book.created_at.desc(), Book.id.asc()).limit(limit).all()
    return [BookSummary.model_validate(book) for book in books]


def get_user_recommendations(db: Session, user_id: int, limit: int = 5) -> List[BookSummary]:
    cached = recommendation_cache.get(user_id)
    if cached is not None:
        return cached
    books = recommend_for_user(db, user_id, limit)
    recommendation_cache.put(user_id, books)
    return books


def generate_all_user_recommendations(db: Session, limit: int = 5) -> List[UserRecommendations]:
    users = db.query(User).filter(User.status == UserStatus.APPROVED).order_by(User.id.asc()).all()
    results = []
    for user in users:
        books = recommend_for_user(db, user.id, limit)
        recommendation_cache.put(user.id, books)
        results.append(UserRecommendations(user_id=user.id, user_email=user.email, recommendations=books))

    total = sum(len(result.recommendations) for result in results)
    logger.info(f"Generated {total} recommendations for {len(results)} users")
    return results


def update_trending_books(
    db: Session, days: int = 30, limit: int = 10, today: Optional[date] = None
) -> List[TrendingBook]:
    """Most-borrowed active books over the last `days` days."""
    today = today or utc_today()
    since = datetime.combine(today - timedelta(days=days), datetime.min.time())
    borrow_count = func.count(BorrowRecord.id)
    rows = (
        db.query(Book, borrow_count)
        .join(BorrowRecord, BorrowRecord.book_id == Book.id)
        .filter(BorrowRecord.created_at >= since, Book.is_active.is_(True))
        .group_by(Book.id)
        .order_by(borrow_count.desc(), Book.rating.desc(), Book.id.asc())
        .limit(limit)
        .all()
    )
    trending = [
        TrendingBook(
            id=book.id,
            title=book.title,
            author=book.author,
            genre=book.genre,
            rating=book.rating,
            borrow_count=count,
        )
        for book, count in rows
    ]
    recommendation_cache.set_trending(trending)
    logger.info(f"Trending books updated: {len(trending)}")
    return trending


def refresh_recommendation_cache() -> int:
    cleared = recommendation_cache.clear()
    logger.info(f"Recommendation cache cleared ({cleared} entries)")
    return cleared
