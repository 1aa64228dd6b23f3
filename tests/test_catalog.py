import pytest

from unilib.errors import NotFoundError, ValidationError
from unilib.schemas.schemas import BookCreate, BookUpdate
from unilib.services import borrow, catalog


def test_search_matches_title_or_author(db, make_book):
    make_book(title="The Left Hand of Darkness", author="Ursula K. Le Guin")
    make_book(title="Darkness Visible", author="William Styron")
    make_book(title="Emma", author="Jane Austen")

    result = catalog.list_books(db, search="darkness")
    assert [book.title for book in result.books] == ["Darkness Visible", "The Left Hand of Darkness"]

    result = catalog.list_books(db, search="AUSTEN")
    assert [book.title for book in result.books] == ["Emma"]


def test_filters_combine(db, make_book):
    make_book(title="Dune", genre="Science Fiction", rating=4.6)
    make_book(title="Hyperion", genre="Science Fiction", rating=4.2, available_copies=0)
    make_book(title="Emma", genre="Classics", rating=4.8)

    available = catalog.list_books(db, genre="Science Fiction", availability="available")
    assert [book.title for book in available.books] == ["Dune"]

    unavailable = catalog.list_books(db, availability="unavailable")
    assert [book.title for book in unavailable.books] == ["Hyperion"]

    rated = catalog.list_books(db, min_rating=4.5, sort="rating")
    assert [book.title for book in rated.books] == ["Emma", "Dune"]


def test_pagination(db, make_book):
    for _ in range(5):
        make_book()

    page = catalog.list_books(db, page=2, page_size=2)

    assert [book.title for book in page.books] == ["Book 3", "Book 4"]
    assert page.pagination.current_page == 2
    assert page.pagination.total_pages == 3
    assert page.pagination.total_books == 5
    assert page.pagination.books_per_page == 2


def test_empty_catalog_has_one_page(db):
    page = catalog.list_books(db)

    assert page.books == []
    assert page.pagination.total_pages == 1


def test_create_book_makes_all_copies_available(db):
    book = catalog.create_book(
        db, BookCreate(title="Dune", author="Frank Herbert", genre="Science Fiction", total_copies=4)
    )

    assert book.available_copies == 4
    assert book.is_active


def test_update_total_copies_keeps_loans(db, user, make_book):
    book = make_book(total_copies=3)
    record = borrow.request_borrow(db, user.id, book.id)
    borrow.approve_borrow(db, record.id)

    book = catalog.update_book(db, book.id, BookUpdate(total_copies=5, title="Dune"))
    assert (book.total_copies, book.available_copies, book.title) == (5, 4, "Dune")

    book = catalog.update_book(db, book.id, BookUpdate(total_copies=1))
    assert (book.total_copies, book.available_copies) == (1, 0)

    with pytest.raises(ValidationError):
        catalog.update_book(db, book.id, BookUpdate(total_copies=0))


def test_unknown_book(db):
    with pytest.raises(NotFoundError):
        catalog.get_book(db, 12345)


def test_book_borrow_stats(db, make_user, make_book):
    book = make_book(total_copies=3)
    first = borrow.request_borrow(db, make_user().id, book.id)
    borrow.approve_borrow(db, first.id)
    borrow.return_book(db, first.id)
    second = borrow.request_borrow(db, make_user().id, book.id)
    borrow.approve_borrow(db, second.id)
    borrow.request_borrow(db, make_user().id, book.id)

    stats = catalog.get_book_borrow_stats(db, book.id)

    assert (stats.total_borrows, stats.active_borrows, stats.returned_borrows) == (3, 1, 1)
