from datetime import timedelta

import pytest
from conftest import NOW

from lending_service import availability
from lending_service.errors import (
    AlreadyReturned,
    Forbidden,
    InvariantViolation,
    Unavailable,
)
from lending_service.models import Book, Borrowing, User

LOAN = timedelta(days=14)


def make_book(total=3, available=None, book_id=1):
    return Book(
        id=book_id,
        title="Dune",
        author="Frank Herbert",
        genre="Science Fiction",
        isbn="9780441172719",
        total_copies=total,
        available_copies=total if available is None else available,
    )


def make_user(user_id, user_type="member"):
    return User(id=user_id, external_id=f"u{user_id}", name="U", email="u@example.com", user_type=user_type)


def test_can_borrow_requires_copies_and_no_active_loan():
    book = make_book(total=1)
    assert availability.can_borrow(book, None)
    assert not availability.can_borrow(book, Borrowing())
    book.available_copies = 0
    assert not availability.can_borrow(book, None)


def test_borrow_sets_times_and_takes_a_copy():
    book = make_book()
    user = make_user(7)

    b = availability.borrow(book, user, NOW, LOAN)

    assert b.borrowed_at == NOW
    assert b.due_at == NOW + LOAN
    assert b.returned_at is None
    assert b.book_id == book.id and b.user_id == user.id
    assert book.available_copies == 2


def test_loan_period_may_be_given_in_days():
    b = availability.borrow(make_book(), make_user(1), NOW, 21)
    assert b.due_at == NOW + timedelta(days=21)


def test_three_copies_lend_three_times_then_unavailable():
    book = make_book(total=3)
    loans = [availability.borrow(book, make_user(i), NOW, LOAN) for i in (1, 2, 3)]

    assert book.available_copies == 0
    availability.check_ledger(book, loans)
    with pytest.raises(Unavailable):
        availability.borrow(book, make_user(4), NOW, LOAN)
    assert book.available_copies == 0


def test_same_user_cannot_hold_two_copies():
    book = make_book(total=3)
    user = make_user(1)
    first = availability.borrow(book, user, NOW, LOAN)

    existing = availability.active_borrowing_for([first], user.id, book.id)
    assert existing is first
    with pytest.raises(Unavailable, match="already borrowed"):
        availability.borrow(book, user, NOW, LOAN, existing)
    assert book.available_copies == 2


def test_librarian_cannot_borrow():
    book = make_book()
    with pytest.raises(Forbidden):
        availability.borrow(book, make_user(1, "librarian"), NOW, LOAN)
    assert book.available_copies == 3


def test_borrow_then_return_restores_copies():
    book = make_book(total=2)
    b = availability.borrow(book, make_user(1), NOW, LOAN)

    availability.return_book(b, book, NOW + timedelta(days=1))

    assert book.available_copies == 2
    assert b.returned_at == NOW + timedelta(days=1)
    availability.check_ledger(book, [b])


def test_second_return_fails_and_counts_once():
    book = make_book(total=2)
    b = availability.borrow(book, make_user(1), NOW, LOAN)
    availability.return_book(b, book, NOW)

    with pytest.raises(AlreadyReturned):
        availability.return_book(b, book, NOW)
    assert book.available_copies == 2


def test_return_beyond_total_is_an_invariant_violation():
    book = make_book(total=1)
    stray = Borrowing(id=9, book_id=book.id, user_id=1, borrowed_at=NOW, due_at=NOW)

    with pytest.raises(InvariantViolation):
        availability.return_book(stray, book, NOW)
    assert book.available_copies == 1
    assert stray.returned_at is None


def test_corrupt_book_refuses_borrow():
    book = make_book(total=1, available=5)
    with pytest.raises(InvariantViolation):
        availability.borrow(book, make_user(1), NOW, LOAN)
    assert book.available_copies == 5


def test_can_delete_only_without_active_loans():
    book = make_book()
    b = availability.borrow(book, make_user(1), NOW, LOAN)
    assert not availability.can_delete(book, [b])

    availability.return_book(b, book, NOW)
    assert availability.can_delete(book, [b])
    assert availability.can_delete(book, [])


def test_ledger_mismatch_is_detected():
    book = make_book(total=3, available=2)
    with pytest.raises(InvariantViolation):
        availability.check_ledger(book, [])
