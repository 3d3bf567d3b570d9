from datetime import timedelta

from conftest import NOW

from lending_service.dashboard import DashboardStats, librarian_stats, member_stats


def loan(user_id, due_in, returned=False):
    return {
        "user_id": user_id,
        "due_at": NOW + due_in,
        "returned_at": NOW if returned else None,
    }


BOOKS = [{"total_copies": 3}, {"total_copies": 2}, {"title": "no counts"}]


def test_empty_input_is_all_zero():
    assert librarian_stats([], [], NOW) == DashboardStats()
    assert member_stats([], [], 1, NOW) == DashboardStats()
    assert librarian_stats(None, None, NOW).total_books == 0


def test_librarian_counts_everything_unreturned():
    borrowings = [
        loan(1, timedelta(days=3)),
        loan(2, timedelta(days=-2)),
        loan(2, timedelta(hours=6)),  # due later today
        loan(3, timedelta(days=-5), returned=True),
    ]
    stats = librarian_stats(BOOKS, borrowings, NOW)

    assert stats.total_books == 3
    assert stats.total_copies == 5
    assert stats.total_borrowed == 3
    assert stats.overdue_count == 1
    assert stats.books_due_today == 1
    assert stats.overdue_borrowings == [borrowings[1]]


def test_member_view_is_scoped_to_user():
    borrowings = [
        loan(1, timedelta(days=3)),
        loan(1, timedelta(days=-1)),
        loan(2, timedelta(days=-2)),
        loan(1, timedelta(days=-9), returned=True),
    ]
    stats = member_stats(BOOKS, borrowings, 1, NOW)

    assert stats.total_books == 3
    assert stats.my_borrowed == 2
    assert stats.my_overdue == 1
    assert stats.overdue_count == 1
    assert stats.my_borrowings == borrowings[:2]
    assert stats.my_overdue_borrowings == [borrowings[1]]
    assert stats.total_borrowed == 0


def test_due_today_is_calendar_day():
    midnight = NOW.replace(hour=0, minute=0)
    borrowings = [
        {"user_id": 1, "due_at": midnight + timedelta(days=1, minutes=1), "returned_at": None},
        {"user_id": 1, "due_at": midnight + timedelta(hours=23, minutes=59), "returned_at": None},
        {"user_id": 1, "due_at": midnight + timedelta(minutes=1), "returned_at": None},
    ]
    stats = librarian_stats([], borrowings, NOW)

    # Both same-date loans count, including the one already past due.
    assert stats.books_due_today == 2
    assert stats.overdue_count == 1


def test_due_exactly_now_is_not_overdue():
    stats = librarian_stats([], [loan(1, timedelta(0))], NOW)
    assert stats.overdue_count == 0
    assert stats.books_due_today == 1
