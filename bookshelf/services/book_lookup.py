"""Book lookup backed by a local relational cache of ISBNdb results.

Lookups check storage first and only call ISBNdb on a miss (or when a refresh
is forced). Successful fetches are written through to storage so the next
lookup for the same ISBN is a cache hit.
"""

import logging
from typing import Any, Dict, List, Optional

from bookshelf.services.isbndb import (
    BookSearchOptions,
    IsbndbClient,
    IsbndbError,
    IsbndbNotFoundError,
)
from bookshelf.services.isbndb_types import IsbndbBook
from bookshelf.utils.books import (
    alternate_isbn,
    clean_isbn,
    is_valid_isbn10,
    isbn10_to_isbn13,
    parse_publication_year,
)

logger = logging.getLogger("bookshelf.cache")

UNKNOWN_AUTHOR = "Unknown Author"
UNKNOWN_PUBLISHER = "Unknown Publisher"
UNKNOWN_TITLE = "Unknown Title"


def book_view(record: Dict[str, Any]) -> Dict[str, Any]:
    """Public view of a stored book, shaped like an ISBNdb book."""
    year = record.get("published_year")
    return {
        "id": record.get("id"),
        "title": record.get("title"),
        "title_long": record.get("title"),
        "isbn": record.get("isbn"),
        "isbn13": record.get("isbn13"),
        "publisher": record.get("publisher"),
        "date_published": str(year) if year is not None else None,
        "pages": record.get("pages"),
        "overview": record.get("overview"),
        "image": record.get("image"),
        "authors": [record["author"]] if record.get("author") else [],
        "subjects": [],
        "cached": True,
    }


def _fresh_view(book: IsbndbBook, record: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "id": record.get("id") if record else None,
        "title": book.get("title"),
        "title_long": book.get("title_long") or book.get("title"),
        "isbn": book.get("isbn"),
        "isbn13": book.get("isbn13"),
        "publisher": book.get("publisher"),
        "date_published": book.get("date_published"),
        "pages": book.get("pages"),
        "overview": book.get("overview") or book.get("synopsis"),
        "image": book.get("image"),
        "authors": list(book.get("authors") or []),
        "subjects": list(book.get("subjects") or []),
        "cached": False,
    }


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def ensure_author(storage: Any, name: str) -> Any:
    """Return the id of the author with exactly this name, creating it if needed."""
    existing = storage.find_author_by_name(name)
    if existing:
        return existing["id"]
    author = storage.add_author(name)
    logger.debug(f"Created author {name!r} ({author['id']})")
    return author["id"]


def ensure_publisher(storage: Any, name: str) -> Any:
    """Return the id of the publisher with exactly this name, creating it if needed."""
    existing = storage.find_publisher_by_name(name)
    if existing:
        return existing["id"]
    publisher = storage.add_publisher(name)
    logger.debug(f"Created publisher {name!r} ({publisher['id']})")
    return publisher["id"]


def cache_book(storage: Any, book: IsbndbBook) -> Optional[Dict[str, Any]]:
    """Upsert an ISBNdb book into storage.

    Books are matched on their exact ISBN. A book without an ISBN is always
    inserted as a new row. Storage failures are logged and None is returned,
    since the cache is best effort.
    """
    isbn = clean_isbn(book.get("isbn")) or None
    try:
        authors = book.get("authors") or []
        author_id = ensure_author(storage, authors[0] if authors else UNKNOWN_AUTHOR)
        publisher_id = ensure_publisher(
            storage, book.get("publisher") or UNKNOWN_PUBLISHER
        )

        isbn13 = clean_isbn(book.get("isbn13")) or None
        if isbn13 is None and isbn and len(isbn) == 13:
            isbn13 = isbn
        elif isbn13 is None and isbn and is_valid_isbn10(isbn):
            isbn13 = isbn10_to_isbn13(isbn)

        fields = {
            "isbn13": isbn13,
            "title": book.get("title") or UNKNOWN_TITLE,
            "overview": book.get("overview") or book.get("synopsis") or None,
            "published_year": parse_publication_year(book.get("date_published")),
            "pages": _to_int(book.get("pages")),
            "image": book.get("image") or None,
            "author_id": author_id,
            "publisher_id": publisher_id,
        }

        existing = storage.find_book_by_exact_isbn(isbn) if isbn else None
        if existing:
            record = storage.update_book_by_isbn(isbn, **fields)
            logger.info(f"Updated cached book in database: {isbn}")
        else:
            record = storage.add_book(isbn=isbn, **fields)
            logger.info(f"Cached book in database: {isbn}")
        return record
    except Exception:
        logger.exception(f"Error caching book: {isbn}")
        return None


def get_book_by_isbn(
    storage: Any, client: IsbndbClient, isbn: str, force_refresh: bool = False
) -> Optional[Dict[str, Any]]:
    """Get a book by ISBN, from the cache when possible.

    Returns None when the book cannot be produced: the ISBN is empty, ISBNdb
    is disabled, ISBNdb has no such book, or the ISBNdb call failed. Errors
    raised by storage while reading the cache propagate.
    """
    clean = clean_isbn(isbn)
    if not clean:
        logger.debug(f"Ignoring lookup for empty ISBN {isbn!r}")
        return None

    if not force_refresh:
        cached = storage.find_book_by_isbn(clean)
        other = alternate_isbn(clean)
        if not cached and other:
            cached = storage.find_book_by_isbn(other)
        if cached:
            logger.info(f"Book found in cache: {clean}")
            return book_view(cached)

    if not client.is_enabled():
        logger.debug(f"ISBNdb disabled, no lookup for {clean}")
        return None

    try:
        logger.info(f"Fetching book from ISBNdb: {clean}")
        response = client.lookup_book_by_isbn(clean)
    except IsbndbNotFoundError:
        logger.info(f"ISBNdb has no book for {clean}")
        return None
    except IsbndbError as e:
        logger.error(f"Failed to fetch book from ISBNdb: {clean}: {e}")
        return None

    book = response.get("book") if isinstance(response, dict) else None
    if not book:
        return None

    record = cache_book(storage, book)
    return _fresh_view(book, record)


def search_cached_books(storage: Any, query: str, limit: int = 20) -> List[Dict[str, Any]]:
    """Case-insensitive title search over cached books."""
    return [book_view(record) for record in storage.search_books_by_title(query, limit)]


def search_books_via_isbndb(
    client: IsbndbClient,
    query: str,
    page: int = 1,
    page_size: int = 20,
    column: str = "",
) -> List[Dict[str, Any]]:
    """Search ISBNdb directly, bypassing the cache.

    Returns an empty list when ISBNdb is disabled or the search fails.
    """
    if not client.is_enabled():
        logger.warning("ISBNdb service is not enabled")
        return []

    try:
        result = client.search_books(
            query, BookSearchOptions(page=page, page_size=page_size, column=column)
        )
    except IsbndbError as e:
        logger.error(f"Error searching books via ISBNdb: {query}: {e}")
        return []

    books = []
    for item in result.get("books") or []:
        # Some responses wrap each entry as {"book": {...}}
        book = item.get("book", item) if isinstance(item, dict) else {}
        books.append(
            {
                "title": book.get("title"),
                "title_long": book.get("title_long") or book.get("title"),
                "isbn": book.get("isbn"),
                "isbn13": book.get("isbn13"),
                "publisher": book.get("publisher"),
                "date_published": book.get("date_published"),
                "pages": book.get("pages") or 0,
                "overview": book.get("overview"),
                "synopsis": book.get("synopsis"),
                "image": book.get("image"),
                "authors": book.get("authors") or [],
                "subjects": book.get("subjects") or [],
                "cached": False,
                "source": "isbndb",
            }
        )
    return books


def get_cache_stats(storage: Any) -> Dict[str, int]:
    return {
        "totalBooks": storage.count_books(),
        "totalAuthors": storage.count_authors(),
        "totalPublishers": storage.count_publishers(),
    }
