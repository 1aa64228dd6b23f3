import itertools
import os

# must be set before unilib reads its settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.pop("SMTP_HOST", None)

import pytest
from fastapi.testclient import TestClient

from unilib.config.db import Base, SessionLocal, engine
from unilib.main import app
from unilib.models.models import Book, User, UserRole, UserStatus
from unilib.security.auth import create_access_token, hash_password
from unilib.services.recommendations import recommendation_cache

PASSWORD = "correct-horse-battery"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    recommendation_cache.clear()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(role=UserRole.USER, status=UserStatus.APPROVED, **fields):
        n = next(counter)
        fields.setdefault("full_name", f"Student {n}")
        fields.setdefault("email", f"student{n}@uni.edu")
        fields.setdefault("university_id", 1000 + n)
        user = User(password_hash=PASSWORD_HASH, role=role, status=status, **fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_book(db):
    counter = itertools.count(1)

    def _make(total_copies=1, available_copies=None, **fields):
        n = next(counter)
        fields.setdefault("title", f"Book {n}")
        fields.setdefault("author", f"Author {n}")
        fields.setdefault("genre", "Fiction")
        book = Book(
            total_copies=total_copies,
            available_copies=total_copies if available_copies is None else available_copies,
            **fields,
        )
        db.add(book)
        db.commit()
        db.refresh(book)
        return book

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN, full_name="Head Librarian", email="librarian@uni.edu")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def headers_for():
    return auth_headers
