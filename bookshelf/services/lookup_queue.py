"""Rate-limited background queue for ISBNdb lookups."""

import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Mapping, Optional, Union

from bookshelf.config import QueueSettings
from bookshelf.services.book_lookup import cache_book
from bookshelf.services.isbndb import (
    IsbndbClient,
    IsbndbConfigurationError,
    IsbndbNotFoundError,
)
from bookshelf.utils.books import clean_isbn

logger = logging.getLogger("bookshelf.queue")

CompletionCallback = Callable[[Optional[BaseException], Any], None]


class QueueItemKind(Enum):
    """Which ISBNdb lookup a queue item performs."""

    BOOK = "book"
    AUTHOR = "author"
    PUBLISHER = "publisher"


class Priority(Enum):
    HIGH = "high"
    LOW = "low"


class QueueItemStatus(Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


REQUIRED_FIELDS = {
    QueueItemKind.BOOK: "isbn",
    QueueItemKind.AUTHOR: "name",
    QueueItemKind.PUBLISHER: "name",
}


class InvalidQueueItemError(ValueError):
    """A lookup request with an unknown kind or a malformed payload."""


@dataclass
class QueueItem:
    """A single pending lookup."""

    id: str
    kind: QueueItemKind
    data: Dict[str, str]
    priority: Priority
    enqueued_at: str
    retry_count: int = 0
    status: QueueItemStatus = QueueItemStatus.QUEUED
    last_error: Optional[str] = None
    future: Future = field(default_factory=Future, repr=False)
    on_complete: Optional[CompletionCallback] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "data": dict(self.data),
            "priority": self.priority.value,
            "enqueued_at": self.enqueued_at,
            "retry_count": self.retry_count,
            "status": self.status.value,
            "last_error": self.last_error,
        }


def _coerce_kind(kind: Union[QueueItemKind, str]) -> QueueItemKind:
    try:
        return kind if isinstance(kind, QueueItemKind) else QueueItemKind(kind)
    except ValueError:
        raise InvalidQueueItemError(f"Unknown queue item kind: {kind!r}") from None


def _coerce_priority(priority: Union[Priority, str]) -> Priority:
    try:
        return priority if isinstance(priority, Priority) else Priority(priority)
    except ValueError:
        raise InvalidQueueItemError(f"Unknown priority: {priority!r}") from None


def _validate_payload(kind: QueueItemKind, data: Any) -> Dict[str, str]:
    if not isinstance(data, Mapping):
        raise InvalidQueueItemError(f"{kind.value} lookup needs a mapping payload")

    key = REQUIRED_FIELDS[kind]
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidQueueItemError(f"{kind.value} lookup needs a non-empty {key!r}")
    if kind is QueueItemKind.BOOK and not clean_isbn(value):
        raise InvalidQueueItemError(f"Not an ISBN: {value!r}")
    return dict(data)


class LookupQueue:
    """Single-worker queue in front of the ISBNdb client.

    Items are served HIGH before LOW and FIFO within a priority. One worker
    thread makes every upstream call, spaced at least rate_limit_seconds
    apart. A failed item is put back at the front of its priority after
    retry_delay_seconds, until max_retries attempts have failed.
    """

    def __init__(
        self,
        client: IsbndbClient,
        storage: Any = None,
        *,
        rate_limit_seconds: float = 1.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 5.0,
        poll_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        autostart: bool = True,
    ) -> None:
        self._client = client
        self._storage = storage
        self.rate_limit_seconds = rate_limit_seconds
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock
        self._sleep = sleep

        self._queues: Dict[Priority, Deque[QueueItem]] = {
            Priority.HIGH: deque(),
            Priority.LOW: deque(),
        }
        self._items: Dict[str, QueueItem] = {}
        self._retry_timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._last_call: Optional[float] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None

        if autostart:
            self.start()

    @classmethod
    def from_settings(
        cls,
        client: IsbndbClient,
        storage: Any = None,
        settings: Optional[QueueSettings] = None,
        **kwargs: Any,
    ) -> "LookupQueue":
        settings = settings or QueueSettings.from_env()
        return cls(
            client,
            storage,
            rate_limit_seconds=settings.rate_limit_seconds,
            max_retries=settings.max_retries,
            retry_delay_seconds=settings.retry_delay_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            **kwargs,
        )

    # -----------------------------
    # Lifecycle
    # -----------------------------

    def start(self) -> None:
        """Start the worker thread if it is not already running."""
        with self._lock:
            self._running = True
            if self._thread is not None and self._thread.is_alive():
                # A stop() that timed out left the old worker busy; keep it.
                return
            # daemon=True so a forgotten queue doesn't block interpreter exit
            self._thread = threading.Thread(
                target=self._run, name="isbndb-lookup-queue", daemon=True
            )
            self._thread.start()
        logger.info("Lookup queue worker started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the worker after its current item.

        Waiting items stay queued. Items sitting in their retry delay are
        moved back into the queue straight away.
        """
        with self._wakeup:
            self._running = False
            timers = list(self._retry_timers.items())
            self._retry_timers.clear()
            for item_id, timer in timers:
                timer.cancel()
                item = self._items.get(item_id)
                if item is not None:
                    self._queues[item.priority].appendleft(item)
            self._wakeup.notify_all()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Lookup queue worker stopped")

    # -----------------------------
    # Enqueueing
    # -----------------------------

    def add_to_queue(
        self,
        kind: Union[QueueItemKind, str],
        data: Mapping[str, str],
        priority: Union[Priority, str] = Priority.LOW,
        on_complete: Optional[CompletionCallback] = None,
    ) -> QueueItem:
        """Validate and queue a lookup, returning the tracked item."""
        kind = _coerce_kind(kind)
        priority = _coerce_priority(priority)
        payload = _validate_payload(kind, data)

        if not self._client.is_enabled():
            raise IsbndbConfigurationError(
                "ISBNdb service is not enabled or API key is missing"
            )

        item = QueueItem(
            id=str(uuid.uuid4()),
            kind=kind,
            data=payload,
            priority=priority,
            enqueued_at=datetime.now(timezone.utc).isoformat(),
            on_complete=on_complete,
        )
        with self._wakeup:
            self._items[item.id] = item
            self._queues[priority].append(item)
            self._wakeup.notify()
        logger.debug(f"Queued {kind.value} lookup {item.id} ({priority.value})")
        return item

    def enqueue(
        self,
        kind: Union[QueueItemKind, str],
        data: Mapping[str, str],
        priority: Union[Priority, str] = Priority.LOW,
        on_complete: Optional[CompletionCallback] = None,
    ) -> Future:
        """Queue a lookup and return a future for its result."""
        return self.add_to_queue(kind, data, priority, on_complete).future

    def queue_book_lookup(
        self, isbn: str, priority: Union[Priority, str] = Priority.LOW
    ) -> Future:
        return self.enqueue(QueueItemKind.BOOK, {"isbn": isbn}, priority)

    def queue_author_lookup(
        self, name: str, priority: Union[Priority, str] = Priority.LOW
    ) -> Future:
        return self.enqueue(QueueItemKind.AUTHOR, {"name": name}, priority)

    def queue_publisher_lookup(
        self, name: str, priority: Union[Priority, str] = Priority.LOW
    ) -> Future:
        return self.enqueue(QueueItemKind.PUBLISHER, {"name": name}, priority)

    # -----------------------------
    # Observability
    # -----------------------------

    def get_queue_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "length": sum(len(q) for q in self._queues.values()),
                "processing": self._thread is not None and self._thread.is_alive(),
                "pending_retries": len(self._retry_timers),
            }

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        """Get a queued, in-flight or retry-pending item by id."""
        with self._lock:
            return self._items.get(item_id)

    # -----------------------------
    # Worker
    # -----------------------------

    def _next_item(self) -> Optional[QueueItem]:
        """Pop the next item, waiting while the queue is empty.

        Returns None once the queue has been stopped.
        """
        with self._wakeup:
            while self._running:
                for priority in (Priority.HIGH, Priority.LOW):
                    if self._queues[priority]:
                        item = self._queues[priority].popleft()
                        item.status = QueueItemStatus.PROCESSING
                        return item
                self._wakeup.wait(self.poll_interval_seconds)
            if self._thread is threading.current_thread():
                self._thread = None
        return None

    def _run(self) -> None:
        while True:
            item = self._next_item()
            if item is None:
                return
            try:
                self._process(item)
            except Exception as e:
                # Never let one item take the worker down.
                logger.exception(f"Unexpected error processing queue item {item.id}")
                self._fail(item, e)

    def _wait_for_rate_limit(self) -> None:
        if self._last_call is not None:
            elapsed = self._clock() - self._last_call
            if elapsed < self.rate_limit_seconds:
                wait = self.rate_limit_seconds - elapsed
                logger.debug(f"Rate limiting ISBNdb: waiting {wait:.2f}s")
                self._sleep(wait)
        self._last_call = self._clock()

    def _call_client(self, item: QueueItem) -> Any:
        if item.kind is QueueItemKind.BOOK:
            return self._client.lookup_book_by_isbn(item.data["isbn"])
        if item.kind is QueueItemKind.AUTHOR:
            return self._client.get_author_details(item.data["name"])
        if item.kind is QueueItemKind.PUBLISHER:
            return self._client.get_publisher_details(item.data["name"])
        raise InvalidQueueItemError(f"Unknown queue item kind: {item.kind!r}")

    def _process(self, item: QueueItem) -> None:
        self._wait_for_rate_limit()
        try:
            result = self._call_client(item)
        except IsbndbNotFoundError:
            logger.info(f"No ISBNdb result for {item.kind.value} {item.data}")
            self._complete(item, None)
            return
        except (IsbndbConfigurationError, InvalidQueueItemError) as e:
            self._fail(item, e)
            return
        except Exception as e:
            self._handle_failure(item, e)
            return

        if (
            item.kind is QueueItemKind.BOOK
            and self._storage is not None
            and isinstance(result, dict)
            and result.get("book")
        ):
            cache_book(self._storage, result["book"])

        self._complete(item, result)

    def _handle_failure(self, item: QueueItem, error: BaseException) -> None:
        item.retry_count += 1
        item.last_error = str(error)

        if item.retry_count >= self.max_retries:
            logger.error(
                f"Lookup {item.id} failed after {item.retry_count} attempts: {error}"
            )
            self._fail(item, error)
            return

        logger.warning(
            f"Lookup {item.id} failed (attempt {item.retry_count}/{self.max_retries}), "
            f"retrying in {self.retry_delay_seconds}s: {error}"
        )
        item.status = QueueItemStatus.QUEUED
        timer = threading.Timer(self.retry_delay_seconds, self._requeue, args=(item,))
        timer.daemon = True
        with self._lock:
            self._retry_timers[item.id] = timer
        timer.start()

    def _requeue(self, item: QueueItem) -> None:
        with self._wakeup:
            if self._retry_timers.pop(item.id, None) is None:
                # stop() already put it back
                return
            self._queues[item.priority].appendleft(item)
            self._wakeup.notify()

    def _complete(self, item: QueueItem, result: Any) -> None:
        item.status = QueueItemStatus.COMPLETED
        with self._lock:
            self._items.pop(item.id, None)
        self._notify(item, None, result)
        item.future.set_result(result)

    def _fail(self, item: QueueItem, error: BaseException) -> None:
        if item.future.done():
            return
        item.status = QueueItemStatus.FAILED
        item.last_error = str(error)
        with self._lock:
            self._items.pop(item.id, None)
        self._notify(item, error, None)
        item.future.set_exception(error)

    def _notify(
        self, item: QueueItem, error: Optional[BaseException], result: Any
    ) -> None:
        if item.on_complete is None:
            return
        try:
            item.on_complete(error, result)
        except Exception:
            logger.exception(f"Completion callback for {item.id} raised")
