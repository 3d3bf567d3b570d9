import re

from .availability import active_borrowing_for
from .errors import ValidationFailed

REQUIRED_FIELDS = ("title", "author", "genre", "isbn")
ISBN_RE = re.compile(r"^(?:\d{10}|\d{13})$")

FILTER_ALL = "all"
FILTER_AVAILABLE = "available"
FILTER_BORROWED = "borrowed"
FILTER_MODES = (FILTER_ALL, FILTER_AVAILABLE, FILTER_BORROWED)


def normalize_isbn(isbn):
    return re.sub(r"[-\s]", "", str(isbn or ""))


def parse_whole_number(value):
    """
    Accept an int or a string of digits; None for anything else, including
    bools and fractional numbers that int() would silently truncate.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
        return int(value)
    return None


def _as_count(data, name, errors):
    value = data.get(name)
    if value is None or value == "":
        return None
    count = parse_whole_number(value)
    if count is None:
        errors.append(f"{name.replace('_', ' ').capitalize()} must be a number")
        return None
    if count < 0:
        errors.append(
            f"{name.replace('_', ' ').capitalize()} must be greater than or equal to 0"
        )
        return None
    return count


def validate_book_fields(data, partial=False):
    """
    Check an incoming book payload and return the cleaned fields.

    With ``partial`` only the keys present are checked (used for updates).
    ``available_copies`` defaults to ``total_copies`` on creation.
    """
    errors = []
    cleaned = {}

    for name in REQUIRED_FIELDS:
        if partial and name not in data:
            continue
        value = data.get(name)
        # JSON numbers are fine for e.g. a numeric ISBN or a title like 1984.
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if value is not None and not isinstance(value, str):
            errors.append(f"{name.capitalize()} must be a string")
            continue
        if isinstance(value, str):
            value = value.strip()
        if not value:
            errors.append(f"{name.capitalize()} can't be blank")
            continue
        cleaned[name] = value

    if "isbn" in cleaned and not ISBN_RE.match(normalize_isbn(cleaned["isbn"])):
        errors.append("Isbn must be a valid ISBN format")

    total = _as_count(data, "total_copies", errors)
    available = _as_count(data, "available_copies", errors)
    if not partial and data.get("total_copies") in (None, ""):
        errors.append("Total copies can't be blank")
    if total is not None:
        cleaned["total_copies"] = total
    if available is not None:
        cleaned["available_copies"] = available
    elif total is not None and not partial:
        cleaned["available_copies"] = total

    if (
        "total_copies" in cleaned
        and "available_copies" in cleaned
        and cleaned["available_copies"] > cleaned["total_copies"]
    ):
        errors.append("Available copies cannot exceed total copies")

    if "image_url" in data:
        cleaned["image_url"] = data.get("image_url") or None

    if errors:
        raise ValidationFailed(errors)
    return cleaned


def borrowed_copies(book):
    return book.total_copies - book.available_copies


def is_available(book):
    return (book.available_copies or 0) > 0


def resize_total_copies(book, new_total):
    """Change the owned copy count, keeping the copies currently out on loan."""
    out = borrowed_copies(book)
    if new_total < out:
        raise ValidationFailed(
            f"Cannot reduce total copies below borrowed copies ({out})"
        )
    book.total_copies = new_total
    book.available_copies = new_total - out
    return book


def apply_book_update(book, cleaned):
    for name in REQUIRED_FIELDS + ("image_url",):
        if name in cleaned:
            setattr(book, name, cleaned[name])
    if "total_copies" in cleaned:
        resize_total_copies(book, cleaned["total_copies"])
    return book


def filter_books(books, mode, borrowings, user_id=None, is_librarian=False):
    """
    Member-facing shelf filter. ``available`` hides books the member
    already holds; ``borrowed`` shows only those. Librarians see everything.
    """
    if mode not in FILTER_MODES:
        raise ValidationFailed(f"Unknown filter: {mode}")
    if is_librarian or mode == FILTER_ALL:
        return list(books)

    result = []
    for book in books:
        held = active_borrowing_for(borrowings, user_id, book.id) is not None
        if mode == FILTER_AVAILABLE and is_available(book) and not held:
            result.append(book)
        elif mode == FILTER_BORROWED and held:
            result.append(book)
    return result
