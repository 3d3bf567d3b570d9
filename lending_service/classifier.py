"""
Temporal status of a borrowing.

Everything that reports a loan as active, overdue or returned goes through
``classify`` so the answer is the same on every surface.
"""

import enum
import math
from datetime import timedelta

ONE_DAY = timedelta(days=1)


class BorrowingStatus(str, enum.Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


def _get(borrowing, name):
    if isinstance(borrowing, dict):
        return borrowing.get(name)
    return getattr(borrowing, name, None)


def classify(borrowing, now):
    """
    RETURNED once ``returned_at`` is set, OVERDUE while unreturned and
    ``due_at < now``, ACTIVE otherwise. A loan due exactly at ``now`` is
    still ACTIVE.
    """
    if _get(borrowing, "returned_at") is not None:
        return BorrowingStatus.RETURNED
    due_at = _get(borrowing, "due_at")
    if due_at is not None and due_at < now:
        return BorrowingStatus.OVERDUE
    return BorrowingStatus.ACTIVE


def is_overdue(borrowing, now):
    return classify(borrowing, now) is BorrowingStatus.OVERDUE


def is_active(borrowing):
    """True while the loan has not been returned (overdue loans included)."""
    return _get(borrowing, "returned_at") is None


def days_remaining(borrowing, now):
    """Whole days until due, rounded up; negative when overdue."""
    delta = _get(borrowing, "due_at") - now
    return math.ceil(delta / ONE_DAY)


def describe_due(borrowing, now):
    status = classify(borrowing, now)
    if status is BorrowingStatus.RETURNED:
        return "Returned"
    days = days_remaining(borrowing, now)
    # Past due by less than a day rounds up to zero.
    if status is BorrowingStatus.OVERDUE and days == 0:
        return "Overdue today"
    unit = "day" if abs(days) == 1 else "days"
    if days < 0:
        return f"{abs(days)} {unit} overdue"
    return f"{days} {unit} remaining"


def is_due_on(borrowing, day):
    """Unreturned and due on calendar date ``day``, whatever the hour."""
    due_at = _get(borrowing, "due_at")
    return is_active(borrowing) and due_at is not None and due_at.date() == day
