"""
Dashboard read model.

Computed from whatever book and borrowing records the caller loaded; records
may be ORM objects or plain mappings, and missing fields count as zero.
"""

from dataclasses import dataclass, field
from typing import Any, List

from .classifier import is_active, is_due_on, is_overdue


def _get(record, name, default=None):
    if isinstance(record, dict):
        value = record.get(name, default)
    else:
        value = getattr(record, name, default)
    return default if value is None else value


@dataclass
class DashboardStats:
    total_books: int = 0
    total_copies: int = 0
    books_due_today: int = 0
    overdue_count: int = 0
    total_borrowed: int = 0
    my_borrowed: int = 0
    my_overdue: int = 0
    overdue_borrowings: List[Any] = field(default_factory=list)
    my_borrowings: List[Any] = field(default_factory=list)
    my_overdue_borrowings: List[Any] = field(default_factory=list)


def _catalog_totals(books):
    books = list(books or [])
    return len(books), sum(int(_get(b, "total_copies", 0)) for b in books)


def librarian_stats(books, borrowings, now):
    total_books, total_copies = _catalog_totals(books)
    borrowings = list(borrowings or [])
    today = now.date()

    active = [b for b in borrowings if is_active(b)]
    overdue = [b for b in active if is_overdue(b, now)]
    return DashboardStats(
        total_books=total_books,
        total_copies=total_copies,
        total_borrowed=len(active),
        books_due_today=sum(1 for b in active if is_due_on(b, today)),
        overdue_count=len(overdue),
        overdue_borrowings=overdue,
    )


def member_stats(books, borrowings, user_id, now):
    total_books, total_copies = _catalog_totals(books)
    mine = [b for b in borrowings or [] if _get(b, "user_id") == user_id]
    today = now.date()

    active = [b for b in mine if is_active(b)]
    overdue = [b for b in active if is_overdue(b, now)]
    return DashboardStats(
        total_books=total_books,
        total_copies=total_copies,
        my_borrowed=len(active),
        my_overdue=len(overdue),
        books_due_today=sum(1 for b in active if is_due_on(b, today)),
        overdue_count=len(overdue),
        my_borrowings=active,
        my_overdue_borrowings=overdue,
    )
