import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from unilib.models.models import BorrowStatus, UserRole, UserStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# Requests


class UserCreate(CamelModel):
    full_name: str = Field(min_length=2)
    email: str
    university_id: int
    password: str = Field(min_length=8)


class BookCreate(CamelModel):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    genre: str = Field(min_length=1)
    total_copies: int = Field(default=1, ge=1)
    rating: float = Field(default=0, ge=0, le=5)
    description: Optional[str] = None
    summary: Optional[str] = None
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    language: Optional[str] = None
    page_count: Optional[int] = Field(default=None, ge=1)
    cover_url: Optional[str] = None
    cover_color: Optional[str] = None


class BookUpdate(CamelModel):
    title: Optional[str] = None
    author: Optional[str] = None
    genre: Optional[str] = None
    total_copies: Optional[int] = Field(default=None, ge=0)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    is_active: Optional[bool] = None
    description: Optional[str] = None
    summary: Optional[str] = None
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    language: Optional[str] = None
    page_count: Optional[int] = Field(default=None, ge=1)
    cover_url: Optional[str] = None
    cover_color: Optional[str] = None


class BorrowCreate(CamelModel):
    book_id: int


class ReviewCreate(CamelModel):
    rating: int = Field(ge=1, le=5)
    comment: str = Field(min_length=1, max_length=2000)


class FineConfigUpdate(CamelModel):
    fine_amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    updated_by: Optional[str] = None


class OverdueFineUpdate(CamelModel):
    fine_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)


class UserStatusUpdate(CamelModel):
    status: UserStatus


class UserRoleUpdate(CamelModel):
    role: UserRole


# Projections


class UserOut(CamelModel):
    id: int
    full_name: str
    email: str
    university_id: int
    status: UserStatus
    role: UserRole
    created_at: datetime.datetime


class BookOut(CamelModel):
    id: int
    title: str
    author: str
    genre: str
    rating: float
    total_copies: int
    available_copies: int
    is_active: bool
    description: Optional[str] = None
    summary: Optional[str] = None
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    language: Optional[str] = None
    page_count: Optional[int] = None
    cover_url: Optional[str] = None
    cover_color: Optional[str] = None
    created_at: datetime.datetime


class BookSummary(CamelModel):
    id: int
    title: str
    author: str
    genre: str
    rating: float


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_books: int
    books_per_page: int


class BookPage(CamelModel):
    books: List[BookOut]
    pagination: Pagination


class BookBorrowStats(CamelModel):
    total_borrows: int
    active_borrows: int
    returned_borrows: int


class BorrowRecordOut(CamelModel):
    id: int
    user_id: int
    book_id: int
    borrow_date: datetime.date
    due_date: Optional[datetime.date] = None
    return_date: Optional[datetime.date] = None
    status: BorrowStatus
    fine_amount: Decimal
    renewal_count: int
    last_reminder_sent: Optional[datetime.datetime] = None
    notes: Optional[str] = None
    borrowed_by: Optional[str] = None
    returned_by: Optional[str] = None
    created_at: datetime.datetime

    @field_serializer("fine_amount", when_used="json")
    def serialize_fine(self, value: Decimal) -> float:
        return float(value)


class BorrowRequestOut(BorrowRecordOut):
    user_name: str
    user_email: str
    user_university_id: int
    book_title: str
    book_author: str
    book_genre: str
    book_cover_url: Optional[str] = None


class ReviewOut(CamelModel):
    id: int
    rating: int
    comment: str
    created_at: datetime.datetime
    user_full_name: str


class ReviewEligibility(CamelModel):
    can_review: bool
    has_existing_review: bool
    is_currently_borrowed: bool
    reason: str


class FineUpdateResult(CamelModel):
    record_id: int
    user_email: str
    book_title: str
    days_overdue: int
    fine_amount: Decimal

    @field_serializer("fine_amount", when_used="json")
    def serialize_fine(self, value: Decimal) -> float:
        return float(value)


class ReminderResult(CamelModel):
    record_id: int
    user_email: str
    book_title: str
    status: str
    error: Optional[str] = None


class ReminderStats(CamelModel):
    due_soon: int
    overdue: int
    reminders_sent_today: int


class RecentBorrow(CamelModel):
    id: int
    book_title: str
    user_name: str
    status: BorrowStatus


class RecentUser(CamelModel):
    id: int
    full_name: str
    email: str
    status: UserStatus


class CategoryStat(CamelModel):
    genre: str
    count: int
    total_copies: int
    available_copies: int
    avg_rating: float


class TrendPoint(CamelModel):
    date: datetime.date
    borrows: int
    returns: int


class DashboardStats(CamelModel):
    total_users: int
    approved_users: int
    pending_users: int
    admin_users: int
    total_books: int
    total_copies: int
    available_copies: int
    borrowed_copies: int
    active_books: int
    inactive_books: int
    books_with_isbn: int = Field(alias="booksWithISBN")
    books_with_publisher: int
    average_page_count: int
    active_borrows: int
    pending_borrows: int
    returned_books: int
    recent_borrows: List[RecentBorrow]
    recent_users: List[RecentUser]
    category_stats: List[CategoryStat]
    books_by_year: List[Tuple[str, int]]
    books_by_language: List[Tuple[str, int]]
    top_rated_books: List[BookSummary]
    borrow_trends: List[TrendPoint]


class ExportStats(CamelModel):
    total_books: int
    total_users: int
    total_borrows: int
    active_borrows: int


class UserRecommendations(CamelModel):
    user_id: int
    user_email: str
    recommendations: List[BookSummary]


class TrendingBook(BookSummary):
    borrow_count: int


class SessionClaims(BaseModel):
    """Decoded bearer token."""

    user_id: int
    email: str
    role: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"sub": str(self.user_id), "email": self.email, "role": self.role}
