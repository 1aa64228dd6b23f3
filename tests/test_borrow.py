from datetime import date, timedelta
from decimal import Decimal

import pytest

from unilib.config.db import SessionLocal
from unilib.config.settings import settings
from unilib.errors import AuthorizationError, DomainRuleError, NotFoundError
from unilib.models.models import BorrowRecord, BorrowStatus, UserStatus
from unilib.services import borrow, fines


def assert_copies_in_bounds(db, book):
    db.refresh(book)
    assert 0 <= book.available_copies <= book.total_copies


def test_request_creates_pending_record(db, user, make_book):
    book = make_book(total_copies=2)

    record = borrow.request_borrow(db, user.id, book.id)

    assert record.status == BorrowStatus.PENDING
    assert record.due_date is None
    db.refresh(book)
    assert book.available_copies == 2


def test_request_fails_without_copies(db, user, make_book):
    book = make_book(total_copies=2, available_copies=0)

    with pytest.raises(DomainRuleError, match="(?i)no copies available"):
        borrow.request_borrow(db, user.id, book.id)
    assert db.query(BorrowRecord).count() == 0


def test_request_requires_approved_account(db, make_user, make_book):
    pending = make_user(status=UserStatus.PENDING)

    with pytest.raises(DomainRuleError, match="approved"):
        borrow.request_borrow(db, pending.id, make_book().id)


def test_request_rejects_inactive_book(db, user, make_book):
    with pytest.raises(DomainRuleError):
        borrow.request_borrow(db, user.id, make_book(is_active=False).id)


def test_request_rejects_second_open_record(db, user, make_book):
    book = make_book(total_copies=3)
    first = borrow.request_borrow(db, user.id, book.id)

    with pytest.raises(DomainRuleError, match="open borrow request"):
        borrow.request_borrow(db, user.id, book.id)

    borrow.approve_borrow(db, first.id)
    with pytest.raises(DomainRuleError, match="open borrow request"):
        borrow.request_borrow(db, user.id, book.id)


def test_request_unknown_book(db, user):
    with pytest.raises(NotFoundError):
        borrow.request_borrow(db, user.id, 999)


def test_approve_sets_dates_and_takes_copy(db, user, make_book):
    book = make_book(total_copies=2)
    record = borrow.request_borrow(db, user.id, book.id)
    today = date(2026, 5, 4)

    record = borrow.approve_borrow(db, record.id, approved_by="librarian@uni.edu", today=today)

    assert record.status == BorrowStatus.BORROWED
    assert record.borrow_date == today
    assert record.due_date == today + timedelta(days=settings.loan_period_days)
    assert record.borrowed_by == "librarian@uni.edu"
    db.refresh(book)
    assert book.available_copies == 1


def test_approve_twice_fails(db, user, make_book):
    record = borrow.request_borrow(db, user.id, make_book(total_copies=2).id)
    borrow.approve_borrow(db, record.id)

    with pytest.raises(DomainRuleError, match="already processed"):
        borrow.approve_borrow(db, record.id)


def test_last_copy_cannot_be_approved_twice(db, make_user, make_book):
    book = make_book(total_copies=1)
    first = borrow.request_borrow(db, make_user().id, book.id)
    second = borrow.request_borrow(db, make_user().id, book.id)

    borrow.approve_borrow(db, first.id)
    with pytest.raises(DomainRuleError, match="(?i)no copies available"):
        borrow.approve_borrow(db, second.id)

    db.refresh(second)
    assert second.status == BorrowStatus.PENDING
    db.refresh(book)
    assert book.available_copies == 0


def test_approve_then_return_restores_copies(db, user, make_book):
    book = make_book(total_copies=3)
    before = book.available_copies
    record = borrow.request_borrow(db, user.id, book.id)

    borrow.approve_borrow(db, record.id)
    assert_copies_in_bounds(db, book)
    record = borrow.return_book(db, record.id)
    assert_copies_in_bounds(db, book)

    assert record.status == BorrowStatus.RETURNED
    assert record.return_date is not None
    assert book.available_copies == before


def test_return_after_due_date_finalizes_fine(db, user, make_book):
    record = borrow.request_borrow(db, user.id, make_book().id)
    borrowed_on = date(2026, 1, 5)
    borrow.approve_borrow(db, record.id, today=borrowed_on)
    fines.set_daily_fine_amount(db, Decimal("0.50"), "librarian@uni.edu")

    returned_on = borrowed_on + timedelta(days=settings.loan_period_days + 3)
    record = borrow.return_book(db, record.id, returned_by="student1@uni.edu", today=returned_on)

    assert record.return_date == returned_on
    assert record.returned_by == "student1@uni.edu"
    assert record.fine_amount == Decimal("1.50")


def test_return_on_time_has_no_fine(db, user, make_book):
    record = borrow.request_borrow(db, user.id, make_book().id)
    borrow.approve_borrow(db, record.id, today=date(2026, 1, 5))

    record = borrow.return_book(db, record.id, today=date(2026, 1, 10))

    assert record.fine_amount == Decimal("0.00")


def test_return_requires_borrowed_record(db, user, make_book):
    record = borrow.request_borrow(db, user.id, make_book().id)

    with pytest.raises(DomainRuleError):
        borrow.return_book(db, record.id)


def test_return_of_someone_elses_record_is_forbidden(db, make_user, make_book):
    owner, other = make_user(), make_user()
    record = borrow.request_borrow(db, owner.id, make_book().id)
    borrow.approve_borrow(db, record.id)

    with pytest.raises(AuthorizationError):
        borrow.return_book(db, record.id, user_id=other.id)


def test_copy_freed_by_return_can_be_requested_again(db, make_user, make_book):
    book = make_book(total_copies=2, available_copies=2)
    holders = [make_user(), make_user()]
    records = []
    for holder in holders:
        record = borrow.request_borrow(db, holder.id, book.id)
        records.append(borrow.approve_borrow(db, record.id))
    db.refresh(book)
    assert book.available_copies == 0

    newcomer = make_user()
    with pytest.raises(DomainRuleError, match="(?i)no copies available"):
        borrow.request_borrow(db, newcomer.id, book.id)

    borrow.return_book(db, records[0].id)
    db.refresh(book)
    assert book.available_copies == 1

    record = borrow.request_borrow(db, newcomer.id, book.id)
    assert record.status == BorrowStatus.PENDING


def test_reject_removes_pending_request(db, user, make_book):
    book = make_book()
    record = borrow.request_borrow(db, user.id, book.id)

    borrow.reject_borrow(db, record.id, rejected_by="librarian@uni.edu")

    assert db.query(BorrowRecord).count() == 0
    db.refresh(book)
    assert book.available_copies == 1


def test_reject_approved_record_fails(db, user, make_book):
    record = borrow.request_borrow(db, user.id, make_book().id)
    borrow.approve_borrow(db, record.id)

    with pytest.raises(DomainRuleError):
        borrow.reject_borrow(db, record.id)


def test_renew_extends_due_date_until_limit(db, user, make_book, monkeypatch):
    monkeypatch.setattr(settings, "max_renewals", 1)
    start = date(2026, 2, 1)
    record = borrow.request_borrow(db, user.id, make_book().id)
    record = borrow.approve_borrow(db, record.id, today=start)
    due = record.due_date

    record = borrow.renew_borrow(db, record.id, user_id=user.id, today=start)

    assert record.renewal_count == 1
    assert record.due_date == due + timedelta(days=settings.loan_period_days)
    with pytest.raises(DomainRuleError, match="Renewal limit"):
        borrow.renew_borrow(db, record.id, user_id=user.id, today=start)


def test_overdue_loan_cannot_be_renewed(db, user, make_book):
    start = date(2026, 2, 1)
    record = borrow.request_borrow(db, user.id, make_book().id)
    record = borrow.approve_borrow(db, record.id, today=start)

    with pytest.raises(DomainRuleError, match="Overdue"):
        borrow.renew_borrow(db, record.id, today=record.due_date + timedelta(days=1))


def test_borrow_requests_listing_filters(db, make_user, make_book):
    alice = make_user(full_name="Alice Smith", email="alice@uni.edu")
    bob = make_user(full_name="Bob Jones", email="bob@uni.edu")
    dune = make_book(title="Dune", total_copies=2)
    emma = make_book(title="Emma")
    first = borrow.request_borrow(db, alice.id, dune.id)
    borrow.request_borrow(db, bob.id, emma.id)
    borrow.approve_borrow(db, first.id)

    pending = borrow.list_borrow_requests(db, status=BorrowStatus.PENDING)
    assert [item.book_title for item in pending] == ["Emma"]

    found = borrow.list_borrow_requests(db, search="alice")
    assert len(found) == 1
    assert found[0].user_name == "Alice Smith"
    assert found[0].status == BorrowStatus.BORROWED

    by_university_id = borrow.list_borrow_requests(db, search=str(bob.university_id))
    assert [item.user_email for item in by_university_id] == ["bob@uni.edu"]


def approve_elsewhere(record_id, **kwargs):
    other = SessionLocal()
    try:
        return borrow.approve_borrow(other, record_id, **kwargs)
    finally:
        other.close()


def test_record_approved_by_another_session_is_not_approved_again(db, user, make_book):
    book = make_book(total_copies=3)
    record = borrow.request_borrow(db, user.id, book.id)
    # this session still holds the record as PENDING
    assert record.status == BorrowStatus.PENDING

    approve_elsewhere(record.id)
    with pytest.raises(DomainRuleError, match="already processed"):
        borrow.approve_borrow(db, record.id)

    db.refresh(book)
    assert book.available_copies == 2
    borrow.return_book(db, record.id)
    db.refresh(book)
    assert book.available_copies == book.total_copies == 3


def test_record_returned_by_another_session_is_not_returned_again(db, user, make_book):
    book = make_book(total_copies=3)
    record = borrow.request_borrow(db, user.id, book.id)
    record = borrow.approve_borrow(db, record.id)
    assert record.status == BorrowStatus.BORROWED

    other = SessionLocal()
    try:
        borrow.return_book(other, record.id)
    finally:
        other.close()
    with pytest.raises(DomainRuleError, match="Only borrowed books"):
        borrow.return_book(db, record.id)

    db.refresh(book)
    assert book.available_copies == 3


def test_rejecting_an_approved_request_elsewhere_fails(db, user, make_book):
    record = borrow.request_borrow(db, user.id, make_book().id)

    approve_elsewhere(record.id)
    with pytest.raises(DomainRuleError, match="already processed"):
        borrow.reject_borrow(db, record.id)
    assert db.query(BorrowRecord).count() == 1
