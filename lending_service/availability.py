"""
Borrow and return transitions.

These functions only touch in-memory entities. They never open sessions or
commit, so ``service`` can run each one inside a single locked transaction.
"""

import logging
from datetime import timedelta

from .classifier import is_active
from .errors import AlreadyReturned, Forbidden, InvariantViolation, Unavailable
from .models import Borrowing

logger = logging.getLogger(__name__)


def check_copy_invariant(book):
    total = book.total_copies
    available = book.available_copies
    if total is None or available is None or not 0 <= available <= total:
        logger.error(
            "Copy invariant broken for book %s: available=%s total=%s",
            book.id,
            available,
            total,
        )
        raise InvariantViolation(
            f"Book {book.id} has {available} available of {total} copies"
        )


def active_borrowing_for(borrowings, user_id, book_id):
    for b in borrowings:
        if b.user_id == user_id and b.book_id == book_id and is_active(b):
            return b
    return None


def can_borrow(book, existing_active_borrowing):
    return (book.available_copies or 0) > 0 and existing_active_borrowing is None


def borrow(book, user, now, loan_period, existing_active_borrowing=None):
    """
    Create a loan of ``book`` for ``user`` and take one copy off the shelf.

    ``existing_active_borrowing`` is the user's unreturned loan of this book,
    if any. Raises ``Unavailable`` when no copy can be lent.
    """
    if not user.is_member:
        raise Forbidden("Only members can borrow books")

    if existing_active_borrowing is not None:
        raise Unavailable("You have already borrowed this book")
    if not can_borrow(book, existing_active_borrowing):
        raise Unavailable("Book is not available")

    if not isinstance(loan_period, timedelta):
        loan_period = timedelta(days=loan_period)

    check_copy_invariant(book)
    book.available_copies -= 1

    borrowing = Borrowing(
        user=user,
        user_id=user.id,
        book=book,
        book_id=book.id,
        borrowed_at=now,
        due_at=now + loan_period,
    )
    logger.info(
        "User %s borrowed book %s, %s copies left",
        user.id,
        book.id,
        book.available_copies,
    )
    return borrowing


def return_book(borrowing, book, now):
    """Close ``borrowing`` and put its copy back on ``book``."""
    if borrowing.returned_at is not None:
        raise AlreadyReturned("Book already returned")
    if book.id != borrowing.book_id:
        raise InvariantViolation(
            f"Borrowing {borrowing.id} does not reference book {book.id}"
        )

    check_copy_invariant(book)
    if book.available_copies >= book.total_copies:
        logger.error(
            "Return of borrowing %s would exceed %s copies of book %s",
            borrowing.id,
            book.total_copies,
            book.id,
        )
        raise InvariantViolation("Cannot return more copies than total")

    book.available_copies += 1
    borrowing.returned_at = now
    logger.info(
        "Borrowing %s returned, book %s now has %s copies available",
        borrowing.id,
        book.id,
        book.available_copies,
    )
    return borrowing


def can_delete(book, active_borrowings):
    return not any(
        b.book_id == book.id and is_active(b) for b in active_borrowings
    )


def check_ledger(book, borrowings):
    """
    The number of unreturned loans of a book must equal the copies taken
    off its shelf.
    """
    check_copy_invariant(book)
    active = sum(1 for b in borrowings if b.book_id == book.id and is_active(b))
    if active != book.total_copies - book.available_copies:
        logger.error(
            "Ledger mismatch for book %s: %s active loans, %s copies out",
            book.id,
            active,
            book.total_copies - book.available_copies,
        )
        raise InvariantViolation(
            f"Book {book.id} has {active} active loans but "
            f"{book.total_copies - book.available_copies} copies out"
        )
