import os
import logging
from functools import wraps

from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask_cors import CORS
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from . import service
from .catalog import FILTER_ALL, filter_books, parse_whole_number
from .config import Config
from .errors import Forbidden, LendingError, Unauthorized, ValidationFailed
from .identity import IdentityClient, RequestContext, bearer_token, sync_user
from .listing import ASC, paginate, search, sort_items
from .models import Base, utcnow
from .serializers import book_to_dict, borrowing_to_dict, stats_to_dict

# ---------------------------------------------------------
# Logging
# ---------------------------------------------------------
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


# ---------------------------------------------------------
# Helpers: DB session, auth context
# ---------------------------------------------------------

def db():
    if "db" not in g:
        g.db = current_app.extensions["lending_sessions"]()
    return g.db


def close_db(exc=None):
    session = g.pop("db", None)
    if session is not None:
        session.close()


def now():
    return utcnow()


def require_user(role=None):
    """
    Resolve the bearer token through the identity service and hand the
    handler an explicit ``RequestContext``.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            token = bearer_token(request.headers.get("Authorization"))
            if not token:
                raise Unauthorized("Authentication required")
            principal = current_app.extensions["identity"].resolve(token)
            user = sync_user(db(), principal)
            if role and user.user_type != role:
                logger.warning(
                    "Access denied on %s: required %s, got %s",
                    request.path,
                    role,
                    user.user_type,
                )
                raise Forbidden(f"Access denied. {role.capitalize()} privileges required.")
            return func(RequestContext(token=token, user=user), *args, **kwargs)

        return wrapper

    return decorator


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return data


def int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationFailed(f"{name} must be an integer")


def handle_lending_error(e):
    if e.status >= 500:
        logger.error("%s on %s %s: %s", e.kind, request.method, request.path, e)
    return jsonify(e.to_dict()), e.status


# ---------------------------------------------------------
# Health
# ---------------------------------------------------------

@api.get("/health")
def health():
    return jsonify({"status": "ok", "service": "lending_service"})


# ---------------------------------------------------------
# Books
# ---------------------------------------------------------

def _book_fields(book):
    return (book.title, book.author, book.genre)


@api.get("/books")
@require_user()
def list_books(ctx):
    """
    ?search=   case-insensitive match on title/author/genre
    ?sort=     field name, with ?direction=asc|desc
    ?filter=   all|available|borrowed (members)
    ?page= / ?per_page=
    """
    books = service.list_books(db())

    mode = request.args.get("filter", FILTER_ALL)
    if mode != FILTER_ALL:
        books = filter_books(
            books,
            mode,
            service.list_borrowings(db(), user_id=ctx.user.id, active_only=True),
            user_id=ctx.user.id,
            is_librarian=ctx.user.is_librarian,
        )

    books = search(books, request.args.get("search"), _book_fields)
    try:
        books = sort_items(
            books, request.args.get("sort"), request.args.get("direction", ASC)
        )
    except ValueError as e:
        raise ValidationFailed(str(e)) from e

    if "page" not in request.args:
        return jsonify([book_to_dict(b) for b in books])

    cfg = current_app.config
    per_page = min(int_arg("per_page", cfg["DEFAULT_PAGE_SIZE"]), cfg["MAX_PAGE_SIZE"])
    if per_page < 1:
        raise ValidationFailed("per_page must be at least 1")
    page = paginate(books, per_page, int_arg("page", 1))
    return jsonify(page.to_dict(book_to_dict))


@api.get("/books/<int:book_id>")
@require_user()
def get_book(ctx, book_id):
    return jsonify(book_to_dict(service.get_book(db(), book_id)))


@api.post("/books")
@require_user(role="librarian")
def create_book(ctx):
    book = service.create_book(db(), json_body())
    return jsonify(book_to_dict(book)), 201


@api.put("/books/<int:book_id>")
@require_user(role="librarian")
def update_book(ctx, book_id):
    book = service.update_book(db(), book_id, json_body())
    return jsonify(book_to_dict(book))


@api.delete("/books/<int:book_id>")
@require_user(role="librarian")
def delete_book(ctx, book_id):
    service.delete_book(db(), book_id)
    return "", 204


# ---------------------------------------------------------
# Borrowings
# ---------------------------------------------------------

@api.get("/borrowings")
@require_user()
def list_borrowings(ctx):
    ts = now()
    borrowings = service.list_borrowings(db(), user_id=ctx.user.id)
    return jsonify([borrowing_to_dict(b, ts) for b in borrowings])


@api.get("/borrowings/overdue")
@require_user(role="librarian")
def overdue(ctx):
    ts = now()
    return jsonify(
        [
            borrowing_to_dict(b, ts, include_user=True)
            for b in service.overdue_borrowings(db(), ts)
        ]
    )


@api.get("/borrowings/my_overdue")
@require_user()
def my_overdue(ctx):
    ts = now()
    return jsonify(
        [
            borrowing_to_dict(b, ts)
            for b in service.overdue_borrowings(db(), ts, user_id=ctx.user.id)
        ]
    )


@api.get("/borrowings/<int:borrowing_id>")
@require_user()
def get_borrowing(ctx, borrowing_id):
    borrowing = service.get_borrowing(db(), ctx.user, borrowing_id)
    return jsonify(borrowing_to_dict(borrowing, now(), include_user=ctx.user.is_librarian))


@api.post("/borrowings")
@require_user(role="member")
def create_borrowing(ctx):
    data = json_body()
    book_id = data.get("book_id")
    if book_id in (None, ""):
        raise ValidationFailed("Book ID is required")
    book_id = parse_whole_number(book_id)
    if book_id is None:
        raise ValidationFailed("Book ID must be an integer")

    ts = now()
    borrowing = service.borrow_book(
        db(), ctx.user, book_id, current_app.config["LOAN_PERIOD_DAYS"], now=ts
    )
    return jsonify(borrowing_to_dict(borrowing, ts)), 201


@api.patch("/borrowings/<int:borrowing_id>/return")
@require_user()
def return_borrowing(ctx, borrowing_id):
    ts = now()
    borrowing = service.return_borrowing(db(), ctx.user, borrowing_id, now=ts)
    return jsonify(borrowing_to_dict(borrowing, ts))


# ---------------------------------------------------------
# Dashboard
# ---------------------------------------------------------

@api.get("/dashboard/librarian")
@require_user(role="librarian")
def librarian_dashboard(ctx):
    ts = now()
    return jsonify(stats_to_dict(service.dashboard_for(db(), ctx.user, ts), ts, True))


@api.get("/dashboard/member")
@require_user(role="member")
def member_dashboard(ctx):
    ts = now()
    return jsonify(stats_to_dict(service.dashboard_for(db(), ctx.user, ts), ts, False))


@api.get("/dashboard/stats")
@require_user()
def dashboard_stats(ctx):
    ts = now()
    stats = service.dashboard_for(db(), ctx.user, ts)
    return jsonify(stats_to_dict(stats, ts, ctx.user.is_librarian))


# ---------------------------------------------------------
# App factory
# ---------------------------------------------------------

def create_app(config_object=Config, engine=None):
    app = Flask(__name__)
    app.config.from_object(config_object)
    CORS(app)

    if engine is None:
        engine = create_engine(
            app.config["SQLALCHEMY_DATABASE_URI"],
            echo=app.config.get("SQLALCHEMY_ECHO", False),
            future=True,
        )
    # Create tables if not present
    Base.metadata.create_all(engine)

    app.extensions["lending_sessions"] = sessionmaker(
        bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
    )
    app.extensions["identity"] = IdentityClient(
        app.config["IDENTITY_BASE_URL"], timeout=app.config["IDENTITY_TIMEOUT"]
    )

    app.register_blueprint(api)
    app.register_error_handler(LendingError, handle_lending_error)
    app.teardown_appcontext(close_db)
    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    create_app().run(host="0.0.0.0", port=port, debug=True)
