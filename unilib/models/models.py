import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from unilib.config.db import *
from unilib.utils import utcnow


class UserStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class BorrowStatus(str, enum.Enum):
    PENDING = "PENDING"
    BORROWED = "BORROWED"
    RETURNED = "RETURNED"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    university_id = Column(Integer, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)
    status = Column(Enum(UserStatus), default=UserStatus.PENDING, nullable=False)
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    last_activity_date = Column(Date)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    borrow_records = relationship("BorrowRecord", back_populates="user")
    reviews = relationship("Review", back_populates="user")


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("available_copies >= 0", name="ck_books_available_non_negative"),
        CheckConstraint("available_copies <= total_copies", name="ck_books_available_le_total"),
    )
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    genre = Column(String, nullable=False, index=True)
    rating = Column(Float, default=0, nullable=False)
    total_copies = Column(Integer, default=1, nullable=False)
    available_copies = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    description = Column(Text)
    summary = Column(Text)
    isbn = Column(String)
    publisher = Column(String)
    publication_year = Column(Integer)
    language = Column(String)
    page_count = Column(Integer)
    cover_url = Column(String)
    cover_color = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    borrow_records = relationship("BorrowRecord", back_populates="book")
    reviews = relationship("Review", back_populates="book")


class BorrowRecord(Base):
    __tablename__ = "borrow_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    borrow_date = Column(Date, nullable=False)
    due_date = Column(Date)
    return_date = Column(Date)
    status = Column(Enum(BorrowStatus), default=BorrowStatus.PENDING, nullable=False, index=True)
    fine_amount = Column(Numeric(10, 2), default=0, nullable=False)
    renewal_count = Column(Integer, default=0, nullable=False)
    last_reminder_sent = Column(DateTime)
    notes = Column(Text)
    borrowed_by = Column(String)
    returned_by = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="borrow_records")
    book = relationship("Book", back_populates="borrow_records")


class Review(Base):
    __tablename__ = "book_reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_book_reviews_user_book"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_book_reviews_rating"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="reviews")
    book = relationship("Book", back_populates="reviews")


class SystemConfig(Base):
    __tablename__ = "system_config"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    updated_by = Column(String)
