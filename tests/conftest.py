import os
import sys
import threading
import time

import pytest

# Test environment configuration
os.environ.setdefault("TEST_MODE", "1")
os.environ.setdefault("ISBNDB_API_KEY", "")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

# Ensure the project root is importable when pytest changes CWD
from pathlib import Path

PROJECT_ROOT = str(Path(__file__).resolve().parents[1])
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from bookshelf.config import IsbndbSettings, QueueSettings  # noqa: E402
from bookshelf.services.isbndb import IsbndbNotFoundError  # noqa: E402
from bookshelf.services.mock_storage import MockStorage  # noqa: E402

EFFECTIVE_JAVA = {
    "isbn": "9780134685991",
    "title": "Effective Java",
    "authors": ["Joshua Bloch"],
    "publisher": "Addison-Wesley",
}


class FakeIsbndbClient:
    """Stands in for IsbndbClient; records every call with a timestamp.

    Responses are keyed by (method, argument). A list of effects is consumed
    in order, the last effect repeating; exceptions in the list are raised.
    Unknown keys raise IsbndbNotFoundError.
    """

    def __init__(self, enabled=True, clock=time.monotonic):
        self.settings = IsbndbSettings(api_key="test-key" if enabled else "")
        self.responses = {}
        self.calls = []
        self.clock = clock
        self.before_call = None
        self._lock = threading.Lock()

    def is_enabled(self):
        return self.settings.enabled

    def set_response(self, method, key, *effects):
        self.responses[(method, key)] = list(effects)

    def call_count(self, method=None):
        return len([c for c in self.calls if method is None or c[0] == method])

    def _respond(self, method, key):
        with self._lock:
            self.calls.append((method, key, self.clock()))
        if self.before_call is not None:
            self.before_call(method, key)

        effects = self.responses.get((method, key))
        if not effects:
            raise IsbndbNotFoundError(f"Not found: {method} {key}")
        effect = effects.pop(0) if len(effects) > 1 else effects[0]
        if isinstance(effect, BaseException):
            raise effect
        return effect

    def lookup_book_by_isbn(self, isbn, with_prices=False):
        return self._respond("book", isbn)

    def get_author_details(self, name, options=None):
        return self._respond("author", name)

    def get_publisher_details(self, name, options=None):
        return self._respond("publisher", name)

    def search_books(self, query, options=None):
        return self._respond("search_books", query)


def wait_until(predicate, timeout=5.0):
    """Poll predicate until it is true or the timeout passes."""
    start = time.time()
    while time.time() - start < timeout:
        if predicate():
            return True
        time.sleep(0.01)
    return False


FAST_QUEUE = QueueSettings(
    rate_limit_seconds=0.0,
    max_retries=3,
    retry_delay_seconds=0.02,
    poll_interval_seconds=0.01,
)


@pytest.fixture()
def fake_client():
    return FakeIsbndbClient()


@pytest.fixture()
def storage():
    return MockStorage()


@pytest.fixture()
def app(fake_client):
    from bookshelf.app import create_app, get_lookup_queue

    flask_app = create_app(
        {
            "TESTING": True,
            "STORAGE_BACKEND": "memory",
            "ISBNDB_CLIENT": fake_client,
            "QUEUE_SETTINGS": FAST_QUEUE,
        }
    )
    yield flask_app
    with flask_app.app_context():
        get_lookup_queue().stop(timeout=2)


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client
