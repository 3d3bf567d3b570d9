from .classifier import classify, days_remaining, describe_due


def _iso(value):
    return value.isoformat() if value else None


def book_to_dict(book):
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "genre": book.genre,
        "isbn": book.isbn,
        "total_copies": book.total_copies,
        "available_copies": book.available_copies,
        "image_url": book.image_url,
        "created_at": _iso(book.created_at),
        "updated_at": _iso(book.updated_at),
    }


def user_to_dict(user):
    return {
        "id": user.id,
        "external_id": user.external_id,
        "name": user.name,
        "email": user.email,
        "user_type": user.user_type,
    }


def borrowing_to_dict(borrowing, now, include_user=False):
    payload = {
        "id": borrowing.id,
        "book_id": borrowing.book_id,
        "user_id": borrowing.user_id,
        "borrowed_at": _iso(borrowing.borrowed_at),
        "due_at": _iso(borrowing.due_at),
        "returned_at": _iso(borrowing.returned_at),
        "status": classify(borrowing, now).value,
        "days_remaining": None
        if borrowing.returned_at
        else days_remaining(borrowing, now),
        "due_label": describe_due(borrowing, now),
        "book": book_to_dict(borrowing.book) if borrowing.book else None,
    }
    if include_user:
        payload["user"] = user_to_dict(borrowing.user) if borrowing.user else None
    return payload


def stats_to_dict(stats, now, librarian):
    if librarian:
        return {
            "total_books": stats.total_books,
            "total_copies": stats.total_copies,
            "total_borrowed": stats.total_borrowed,
            "books_due_today": stats.books_due_today,
            "overdue_count": stats.overdue_count,
            "overdue_borrowings": [
                borrowing_to_dict(b, now, include_user=True)
                for b in stats.overdue_borrowings
            ],
        }
    return {
        "total_books": stats.total_books,
        "total_copies": stats.total_copies,
        "my_borrowed": stats.my_borrowed,
        "my_overdue": stats.my_overdue,
        "books_due_today": stats.books_due_today,
        "overdue_count": stats.overdue_count,
        "my_borrowings": [borrowing_to_dict(b, now) for b in stats.my_borrowings],
        "my_overdue_borrowings": [
            borrowing_to_dict(b, now) for b in stats.my_overdue_borrowings
        ],
    }
