"""
Transactional boundary around the lending rules.

Each mutating function locks the rows it reads (``SELECT ... FOR UPDATE``),
applies one transition from ``availability`` or ``catalog`` and commits once.
Where the database cannot lock rows (SQLite), the book's version counter
turns the copy-count write into a compare-and-swap instead.
Any failure rolls the whole unit back, so a borrowing never exists without
its copy-count change or vice versa. Nothing here retries.
"""

import logging
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from . import availability, catalog
from .classifier import is_overdue
from .dashboard import librarian_stats, member_stats
from .errors import (
    Conflict,
    Forbidden,
    InvariantViolation,
    LendingError,
    NotFound,
    Unavailable,
)
from .models import Book, Borrowing, utcnow

logger = logging.getLogger(__name__)


def _commit(session, what, on_stale=None):
    """
    Commit one unit of work. A book row changed by another transaction since
    it was read raises ``on_stale`` (``Conflict`` by default).
    """
    try:
        session.commit()
    except StaleDataError as e:
        session.rollback()
        logger.warning("Concurrent change rejected %s: %s", what, e)
        raise (on_stale or Conflict("Record was changed by another request, try again")) from e
    except IntegrityError as e:
        session.rollback()
        detail = str(e.orig)
        if "chk_book" in detail:
            logger.error("Copy-count constraint rejected %s: %s", what, detail)
            raise InvariantViolation("Copy counts would become inconsistent") from e
        logger.warning("Integrity conflict on %s: %s", what, detail)
        if "borrowing" in detail and "UNIQUE" in detail.upper():
            raise Unavailable("You have already borrowed this book") from e
        if "isbn" in detail:
            raise Conflict("A book with this ISBN already exists") from e
        raise Conflict(f"Conflicting change on {what}") from e


def _locked_book(session, book_id):
    book = session.execute(
        select(Book).where(Book.id == book_id).with_for_update()
    ).scalar_one_or_none()
    if not book:
        raise NotFound("Book not found")
    return book


def _active_borrowings_of_book(session, book_id):
    return (
        session.execute(
            select(Borrowing)
            .where(Borrowing.book_id == book_id, Borrowing.returned_at.is_(None))
            .with_for_update()
        )
        .scalars()
        .all()
    )


# ----------------- borrow / return -----------------

def borrow_book(session, user, book_id, loan_period_days, now=None):
    now = now or utcnow()
    try:
        book = _locked_book(session, book_id)
        existing = availability.active_borrowing_for(
            _active_borrowings_of_book(session, book.id), user.id, book.id
        )
        borrowing = availability.borrow(
            book, user, now, timedelta(days=loan_period_days), existing
        )
        session.add(borrowing)
        _commit(
            session,
            f"borrow of book {book_id}",
            on_stale=Unavailable("Book is not available"),
        )
    except LendingError as e:
        session.rollback()
        logger.warning("Borrow of book %s by user %s refused: %s", book_id, user.id, e)
        raise
    return borrowing


def return_borrowing(session, user, borrowing_id, now=None):
    now = now or utcnow()
    try:
        borrowing = session.execute(
            select(Borrowing).where(Borrowing.id == borrowing_id).with_for_update()
        ).scalar_one_or_none()
        if not borrowing:
            raise NotFound("Borrowing not found")
        if not user.is_librarian and borrowing.user_id != user.id:
            raise Forbidden("Access denied")

        book = _locked_book(session, borrowing.book_id)
        availability.return_book(borrowing, book, now)
        _commit(session, f"return of borrowing {borrowing_id}")
    except LendingError as e:
        session.rollback()
        logger.warning("Return of borrowing %s refused: %s", borrowing_id, e)
        raise
    return borrowing


# ----------------- catalog -----------------

def _ensure_unique_isbn(session, isbn, exclude_id=None):
    q = select(Book).where(func.lower(Book.isbn) == isbn.lower())
    if exclude_id is not None:
        q = q.where(Book.id != exclude_id)
    if session.execute(q).first():
        raise Conflict("A book with this ISBN already exists")


def create_book(session, data):
    cleaned = catalog.validate_book_fields(data)
    _ensure_unique_isbn(session, cleaned["isbn"])

    book = Book(**cleaned)
    session.add(book)
    _commit(session, f"creation of book {cleaned['isbn']}")
    logger.info("Book %s added: %s (ISBN %s)", book.id, book.title, book.isbn)
    return book


def update_book(session, book_id, data):
    try:
        book = _locked_book(session, book_id)
        cleaned = catalog.validate_book_fields(data, partial=True)
        if "isbn" in cleaned:
            _ensure_unique_isbn(session, cleaned["isbn"], exclude_id=book.id)
        catalog.apply_book_update(book, cleaned)
        availability.check_copy_invariant(book)
        _commit(session, f"update of book {book_id}")
    except LendingError:
        session.rollback()
        raise
    logger.info("Book %s updated", book_id)
    return book


def delete_book(session, book_id):
    try:
        book = _locked_book(session, book_id)
        if not availability.can_delete(book, _active_borrowings_of_book(session, book.id)):
            raise Conflict("Cannot delete book: It is currently borrowed")
        session.delete(book)
        _commit(session, f"delete of book {book_id}")
    except LendingError as e:
        session.rollback()
        logger.warning("Delete of book %s refused: %s", book_id, e)
        raise
    logger.info("Book %s deleted", book_id)


def get_book(session, book_id):
    book = session.get(Book, book_id)
    if not book:
        raise NotFound("Book not found")
    return book


def list_books(session):
    return session.execute(select(Book).order_by(Book.id)).scalars().all()


# ----------------- read side -----------------

def get_borrowing(session, user, borrowing_id):
    borrowing = session.get(Borrowing, borrowing_id)
    if not borrowing:
        raise NotFound("Borrowing not found")
    if not user.is_librarian and borrowing.user_id != user.id:
        raise Forbidden("Access denied")
    return borrowing


def list_borrowings(session, user_id=None, active_only=False):
    q = select(Borrowing).order_by(Borrowing.borrowed_at.desc(), Borrowing.id.desc())
    if user_id is not None:
        q = q.where(Borrowing.user_id == user_id)
    if active_only:
        q = q.where(Borrowing.returned_at.is_(None))
    return session.execute(q).scalars().all()


def overdue_borrowings(session, now=None, user_id=None):
    now = now or utcnow()
    active = list_borrowings(session, user_id=user_id, active_only=True)
    return [b for b in active if is_overdue(b, now)]


def dashboard_for(session, user, now=None):
    now = now or utcnow()
    books = list_books(session)
    if user.is_librarian:
        return librarian_stats(books, list_borrowings(session, active_only=True), now)
    return member_stats(
        books, list_borrowings(session, user_id=user.id, active_only=True), user.id, now
    )
