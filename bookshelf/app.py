import json
import logging
import os
from typing import Any, Dict, Optional

import click
from flask import Blueprint, Flask, current_app, jsonify, request

from bookshelf.config import IsbndbSettings, QueueSettings, is_test_mode
from bookshelf.models import db
from bookshelf.services import book_lookup
from bookshelf.services.isbndb import IsbndbClient, IsbndbConfigurationError
from bookshelf.services.lookup_queue import (
    REQUIRED_FIELDS,
    InvalidQueueItemError,
    LookupQueue,
    QueueItemKind,
)
from bookshelf.services.mock_storage import MockStorage
from bookshelf.services.sql_storage import SQLStorage

logger = logging.getLogger("bookshelf")

admin = Blueprint("admin", __name__, url_prefix="/admin")


class AppContextStorage:
    """SQLStorage for threads that run outside a request.

    Every call opens its own application context, so the lookup queue worker
    can write through to the database.
    """

    def __init__(self, app: Flask):
        self._app = app

    def __getattr__(self, name: str) -> Any:
        def call(*args: Any, **kwargs: Any) -> Any:
            with self._app.app_context():
                return getattr(SQLStorage(db.session), name)(*args, **kwargs)

        return call


def _state() -> Dict[str, Any]:
    return current_app.extensions["bookshelf"]


def get_storage() -> Any:
    """Storage for the current application (in-memory in test mode)."""
    storage = _state()["storage"]
    if storage is not None:
        return storage
    return SQLStorage(db.session)


def get_isbndb_client() -> IsbndbClient:
    return _state()["client"]


def get_lookup_queue() -> LookupQueue:
    return _state()["queue"]


def create_app(test_config: Optional[Dict[str, Any]] = None) -> Flask:
    app = Flask(__name__)

    test_mode = is_test_mode()
    if test_mode:
        default_db = f"sqlite:///{os.path.abspath('e2e_test.db')}"
    else:
        default_db = f"sqlite:///{os.path.abspath('bookshelf.db')}"
    app.config.from_mapping(
        SQLALCHEMY_DATABASE_URI=os.environ.get("DB_URL", default_db),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        STORAGE_BACKEND="memory" if test_mode else "sql",
        ISBNDB_SETTINGS=None,
        QUEUE_SETTINGS=None,
        ISBNDB_CLIENT=None,
    )
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

    db.init_app(app)

    client = app.config["ISBNDB_CLIENT"] or IsbndbClient(
        app.config["ISBNDB_SETTINGS"] or IsbndbSettings.from_env()
    )

    if app.config["STORAGE_BACKEND"] == "memory":
        storage: Any = MockStorage()
        worker_storage: Any = storage
    else:
        storage = None
        worker_storage = AppContextStorage(app)
        with app.app_context():
            db.create_all()

    queue = LookupQueue.from_settings(
        client,
        worker_storage,
        app.config["QUEUE_SETTINGS"] or QueueSettings.from_env(),
    )

    app.extensions["bookshelf"] = {
        "client": client,
        "storage": storage,
        "queue": queue,
    }

    app.register_blueprint(admin)
    register_commands(app)
    return app


# -----------------------------
# Admin routes
# -----------------------------


@admin.route("/", methods=["GET"])
def feature_flags():
    settings = get_isbndb_client().settings
    flags = {
        "isbndbEnabled": settings.enabled_flag,
        "isbndbApiKeyConfigured": len(settings.api_key) > 0,
        "queueStats": get_lookup_queue().get_queue_stats(),
    }
    return jsonify({"success": True, "data": flags})


@admin.route("/cache-stats", methods=["GET"])
def cache_stats():
    try:
        stats = book_lookup.get_cache_stats(get_storage())
    except Exception:
        logger.exception("Failed to get cache stats")
        return jsonify({"success": False, "error": "Failed to get cache stats"}), 500
    return jsonify({"success": True, "data": stats})


@admin.route("/lookup-book", methods=["POST"])
def lookup_book():
    payload = request.get_json(silent=True) or {}
    isbn = payload.get("isbn")
    if not isbn:
        return jsonify({"success": False, "error": "ISBN is required"}), 400

    try:
        book = book_lookup.get_book_by_isbn(
            get_storage(), get_isbndb_client(), str(isbn), force_refresh=True
        )
    except Exception:
        logger.exception(f"Failed to lookup book {isbn}")
        return jsonify({"success": False, "error": "Failed to lookup book"}), 500

    if book:
        return jsonify({"success": True, "data": book})
    return jsonify({"success": False, "error": "Book not found"}), 404


@admin.route("/queue-lookup", methods=["POST"])
def queue_lookup():
    payload = request.get_json(silent=True) or {}
    kind = payload.get("kind", QueueItemKind.BOOK.value)
    try:
        field = REQUIRED_FIELDS[QueueItemKind(kind)]
    except ValueError:
        return jsonify({"success": False, "error": f"Unknown kind: {kind}"}), 400

    try:
        item = get_lookup_queue().add_to_queue(
            kind, {field: payload.get(field)}, payload.get("priority", "low")
        )
    except InvalidQueueItemError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except IsbndbConfigurationError as e:
        return jsonify({"success": False, "error": str(e)}), 503
    return jsonify({"success": True, "data": item.to_dict()}), 202


# -----------------------------
# CLI commands
# -----------------------------


def register_commands(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Drop all tables and re-initialize the database."""
        db.drop_all()
        db.create_all()
        click.echo("Database re-initialized (all data was deleted).")

    @app.cli.command("lookup-isbn")
    @click.argument("isbn")
    @click.option("--force", is_flag=True, help="Bypass the cache.")
    def lookup_isbn_command(isbn, force):
        """Look up a book by ISBN and cache it."""
        book = book_lookup.get_book_by_isbn(
            get_storage(), get_isbndb_client(), isbn, force_refresh=force
        )
        if not book:
            click.echo(f"No book found for {isbn}.")
            return
        click.echo(json.dumps(book, indent=2))

    @app.cli.command("cache-stats")
    def cache_stats_command():
        """Print cached book, author and publisher counts."""
        stats = book_lookup.get_cache_stats(get_storage())
        for key, value in stats.items():
            click.echo(f"{key}: {value}")


if __name__ == "__main__":
    debug_mode = os.environ.get("FLASK_DEBUG", "False").lower() == "true"
    create_app().run(debug=debug_mode)
