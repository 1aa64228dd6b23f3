import pytest

from unilib.errors import DomainRuleError
from unilib.models.models import Review
from unilib.schemas.schemas import ReviewCreate
from unilib.services import borrow, reviews


def borrow_and_return(db, user, book):
    record = borrow.request_borrow(db, user.id, book.id)
    borrow.approve_borrow(db, record.id)
    return borrow.return_book(db, record.id)


def test_cannot_review_without_returned_loan(db, user, make_book):
    book = make_book()

    eligibility = reviews.get_review_eligibility(db, user.id, book.id)
    assert not eligibility.can_review
    assert eligibility.reason == "You must have borrowed this book to review it"

    with pytest.raises(DomainRuleError, match="must have borrowed"):
        reviews.create_review(db, user.id, book.id, ReviewCreate(rating=4, comment="Great"))


def test_current_loan_is_not_enough(db, user, make_book):
    book = make_book()
    record = borrow.request_borrow(db, user.id, book.id)
    borrow.approve_borrow(db, record.id)

    eligibility = reviews.get_review_eligibility(db, user.id, book.id)
    assert eligibility.is_currently_borrowed
    assert not eligibility.can_review


def test_one_review_per_user_and_book(db, user, make_book):
    book = make_book()
    borrow_and_return(db, user, book)
    assert reviews.get_review_eligibility(db, user.id, book.id).can_review

    review = reviews.create_review(db, user.id, book.id, ReviewCreate(rating=5, comment=" Loved it "))
    assert review.comment == "Loved it"

    eligibility = reviews.get_review_eligibility(db, user.id, book.id)
    assert eligibility.has_existing_review
    assert not eligibility.can_review
    with pytest.raises(DomainRuleError, match="already reviewed"):
        reviews.create_review(db, user.id, book.id, ReviewCreate(rating=1, comment="Again"))
    assert db.query(Review).count() == 1


def test_list_reviews_includes_author_name(db, make_user, make_book):
    book = make_book()
    reader = make_user(full_name="Grace Hopper")
    borrow_and_return(db, reader, book)
    reviews.create_review(db, reader.id, book.id, ReviewCreate(rating=4, comment="Solid"))

    listed = reviews.list_reviews(db, book.id)

    assert len(listed) == 1
    assert listed[0].user_full_name == "Grace Hopper"
    assert listed[0].rating == 4
