"""Integration tests for the admin blueprint and CLI commands."""

import os

import pytest
from conftest import EFFECTIVE_JAVA, FAST_QUEUE, FakeIsbndbClient

from bookshelf.app import create_app, get_lookup_queue, get_storage
from bookshelf.services import book_lookup


@pytest.fixture
def disabled_client():
    """Test client for an app whose ISBNdb key is missing."""
    flask_app = create_app(
        {
            "TESTING": True,
            "STORAGE_BACKEND": "memory",
            "ISBNDB_CLIENT": FakeIsbndbClient(enabled=False),
            "QUEUE_SETTINGS": FAST_QUEUE,
        }
    )
    with flask_app.test_client() as client:
        yield client
    with flask_app.app_context():
        get_lookup_queue().stop(timeout=2)


def test_feature_flags(client):
    response = client.get("/admin/")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["isbndbEnabled"] is True
    assert data["isbndbApiKeyConfigured"] is True
    assert data["queueStats"]["length"] == 0
    assert data["queueStats"]["processing"] is True


def test_feature_flags_without_api_key(disabled_client):
    data = disabled_client.get("/admin/").get_json()["data"]
    assert data["isbndbEnabled"] is True
    assert data["isbndbApiKeyConfigured"] is False


def test_cache_stats_route(app, client):
    with app.app_context():
        book_lookup.cache_book(get_storage(), EFFECTIVE_JAVA)

    response = client.get("/admin/cache-stats")

    assert response.status_code == 200
    assert response.get_json() == {
        "success": True,
        "data": {"totalBooks": 1, "totalAuthors": 1, "totalPublishers": 1},
    }


def test_cache_stats_route_reports_storage_failure(client, monkeypatch):
    """Storage errors become a 500 rather than a traceback."""

    def broken(storage):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(book_lookup, "get_cache_stats", broken)

    response = client.get("/admin/cache-stats")

    assert response.status_code == 500
    assert response.get_json()["success"] is False


def test_lookup_book_requires_isbn(client):
    response = client.post("/admin/lookup-book", json={})
    assert response.status_code == 400
    assert response.get_json()["error"] == "ISBN is required"


def test_lookup_book_found(client, fake_client):
    fake_client.set_response("book", "9780134685991", {"book": EFFECTIVE_JAVA})

    response = client.post("/admin/lookup-book", json={"isbn": "978-0-13-468599-1"})

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["title"] == "Effective Java"
    assert data["cached"] is False


def test_lookup_book_always_refreshes(client, fake_client):
    """The admin lookup bypasses the cache on every request."""
    fake_client.set_response("book", "9780134685991", {"book": EFFECTIVE_JAVA})

    client.post("/admin/lookup-book", json={"isbn": "9780134685991"})
    client.post("/admin/lookup-book", json={"isbn": "9780134685991"})

    assert fake_client.call_count("book") == 2


def test_lookup_book_not_found(client):
    response = client.post("/admin/lookup-book", json={"isbn": "9780000000000"})
    assert response.status_code == 404
    assert response.get_json()["error"] == "Book not found"


def test_queue_lookup_accepts_book(client, fake_client):
    fake_client.set_response("book", "9780134685991", {"book": EFFECTIVE_JAVA})

    response = client.post(
        "/admin/queue-lookup", json={"isbn": "9780134685991", "priority": "high"}
    )

    assert response.status_code == 202
    data = response.get_json()["data"]
    assert data["kind"] == "book"
    assert data["priority"] == "high"
    assert data["data"] == {"isbn": "9780134685991"}


def test_queue_lookup_accepts_author(client):
    response = client.post(
        "/admin/queue-lookup", json={"kind": "author", "name": "Joshua Bloch"}
    )
    assert response.status_code == 202
    assert response.get_json()["data"]["kind"] == "author"


@pytest.mark.parametrize(
    "payload",
    [
        {"kind": "magazine", "isbn": "9780134685991"},
        {"kind": "book"},
        {"kind": "publisher", "name": ""},
        {"isbn": "9780134685991", "priority": "urgent"},
    ],
)
def test_queue_lookup_rejects_bad_requests(client, payload):
    response = client.post("/admin/queue-lookup", json=payload)
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_queue_lookup_when_isbndb_disabled(disabled_client):
    response = disabled_client.post(
        "/admin/queue-lookup", json={"isbn": "9780134685991"}
    )
    assert response.status_code == 503


def test_cli_lookup_isbn(app, fake_client):
    fake_client.set_response("book", "9780134685991", {"book": EFFECTIVE_JAVA})
    runner = app.test_cli_runner()

    result = runner.invoke(args=["lookup-isbn", "9780134685991"])

    assert result.exit_code == 0
    assert "Effective Java" in result.output


def test_cli_lookup_isbn_not_found(app):
    result = app.test_cli_runner().invoke(args=["lookup-isbn", "9780000000000"])
    assert result.exit_code == 0
    assert "No book found" in result.output


def test_cli_cache_stats(app):
    with app.app_context():
        book_lookup.cache_book(get_storage(), EFFECTIVE_JAVA)

    result = app.test_cli_runner().invoke(args=["cache-stats"])

    assert result.exit_code == 0
    assert "totalBooks: 1" in result.output


def test_default_database_is_absolute_sqlite_path(monkeypatch):
    monkeypatch.delenv("DB_URL", raising=False)
    flask_app = create_app(
        {"STORAGE_BACKEND": "memory", "ISBNDB_CLIENT": FakeIsbndbClient()}
    )
    with flask_app.app_context():
        get_lookup_queue().stop(timeout=2)

    uri = flask_app.config["SQLALCHEMY_DATABASE_URI"]
    assert uri == f"sqlite:///{os.path.abspath('e2e_test.db')}"
    assert not uri.startswith("sqlite://///")
