import itertools
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lending_service.app import create_app
from lending_service.config import Config
from lending_service.errors import Unauthorized
from lending_service.identity import Principal
from lending_service.models import Base, Book, User

NOW = datetime(2024, 3, 15, 12, 0, 0)


class AppTestConfig(Config):
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOAN_PERIOD_DAYS = 14
    DEFAULT_PAGE_SIZE = 2
    TESTING = True


class FakeIdentity:
    """Stands in for the identity service: token -> Principal."""

    def __init__(self):
        self.principals = {
            "librarian-token": Principal("lib-1", "Lara Librarian", "lara@example.com", "librarian"),
            "alice-token": Principal("mem-1", "Alice Member", "alice@example.com", "member"),
            "bob-token": Principal("mem-2", "Bob Member", "bob@example.com", "member"),
        }

    def resolve(self, token):
        try:
            return self.principals[token]
        except KeyError:
            raise Unauthorized("Invalid or expired token")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_book(session):
    isbns = itertools.count(9780000000001)

    def _make(title="Dune", author="Frank Herbert", genre="Science Fiction",
              isbn=None, total=3, available=None):
        book = Book(
            title=title,
            author=author,
            genre=genre,
            isbn=isbn or str(next(isbns)),
            total_copies=total,
            available_copies=total if available is None else available,
        )
        session.add(book)
        session.commit()
        return book
    return _make


@pytest.fixture
def member(session):
    user = User(external_id="mem-1", name="Alice Member", email="alice@example.com", user_type="member")
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def other_member(session):
    user = User(external_id="mem-2", name="Bob Member", email="bob@example.com", user_type="member")
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def librarian(session):
    user = User(external_id="lib-1", name="Lara Librarian", email="lara@example.com", user_type="librarian")
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def app(engine, monkeypatch):
    app = create_app(AppTestConfig, engine=engine)
    app.extensions["identity"] = FakeIdentity()
    monkeypatch.setattr("lending_service.app.now", lambda: NOW)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def auth(token):
    return {"Authorization": f"Bearer {token}"}
