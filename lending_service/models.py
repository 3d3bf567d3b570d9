from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    CheckConstraint,
    Column,
    Integer,
    String,
    DateTime,
    Enum,
    ForeignKey,
    Index,
)

Base = declarative_base()


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Book(Base):
    __tablename__ = "book"
    __table_args__ = (
        CheckConstraint("total_copies >= 0", name="chk_book_total_copies"),
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="chk_book_available_copies",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(20), unique=True, nullable=False)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    genre = Column(String(100), nullable=False)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    image_url = Column(String(500))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    # Every UPDATE/DELETE of a book matches on this counter, so a write based
    # on a stale read of the copy counts hits zero rows and fails.
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    borrowings = relationship(
        "Borrowing", back_populates="book", cascade="all, delete-orphan"
    )


class User(Base):
    """
    Local mirror of an identity-service account. Upserted on every
    authenticated request so borrowings can reference it.
    """
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(100), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    user_type = Column(
        Enum("librarian", "member", name="user_type"),
        nullable=False,
        default="member",
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)

    borrowings = relationship("Borrowing", back_populates="user")

    @property
    def is_librarian(self):
        return self.user_type == "librarian"

    @property
    def is_member(self):
        return self.user_type == "member"


class Borrowing(Base):
    __tablename__ = "borrowing"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    book_id = Column(Integer, ForeignKey("book.id"), nullable=False)
    borrowed_at = Column(DateTime, nullable=False, default=utcnow)
    due_at = Column(DateTime, nullable=False)
    returned_at = Column(DateTime)

    user = relationship("User", back_populates="borrowings")
    book = relationship("Book", back_populates="borrowings")

    @property
    def is_active(self):
        return self.returned_at is None


# At most one unreturned loan per (user, book).
Index(
    "uq_borrowing_active_user_book",
    Borrowing.user_id,
    Borrowing.book_id,
    unique=True,
    sqlite_where=Borrowing.returned_at.is_(None),
    postgresql_where=Borrowing.returned_at.is_(None),
)
