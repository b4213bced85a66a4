"""Client for the ISBNdb v2 book metadata API.

The client only talks HTTP and translates responses; caching, retries and
rate limiting belong to the lookup queue and the book lookup service.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, cast
from urllib.parse import quote

import requests

from bookshelf.config import IsbndbSettings
from bookshelf.services.isbndb_types import (
    AuthorResponse,
    AuthorSearchResponse,
    BookResponse,
    BookSearchResponse,
    PublisherResponse,
    PublisherSearchResponse,
)
from bookshelf.utils.books import clean_isbn

logger = logging.getLogger("bookshelf.isbndb")

USER_AGENT = "Bookshelf/1.0 (library management; isbndb lookup)"

SEARCH_COLUMNS = ("title", "author", "date_published", "subjects", "")
SEARCH_INDEXES = ("books", "authors", "publishers", "subjects")


class IsbndbError(RuntimeError):
    """Base class for every failure raised by the ISBNdb client."""


class IsbndbConfigurationError(IsbndbError):
    """The client is disabled or has no API key."""


class IsbndbNotFoundError(IsbndbError):
    """ISBNdb answered 404 for the requested resource."""


class IsbndbUpstreamError(IsbndbError):
    """ISBNdb answered with a non-2xx status other than 404."""

    def __init__(self, status_code: Optional[int], message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class IsbndbTransportError(IsbndbError):
    """The request never produced a response (network error or timeout)."""


@dataclass
class PageOptions:
    page: int = 1
    page_size: int = 20
    language: Optional[str] = None


@dataclass
class BookSearchOptions:
    page: int = 1
    page_size: int = 20
    column: str = ""
    year: Optional[int] = None
    edition: Optional[int] = None
    language: Optional[str] = None
    should_match_all: bool = False


@dataclass
class SearchAllFilters:
    page: int = 1
    page_size: int = 20
    isbn: Optional[str] = None
    isbn13: Optional[str] = None
    author: Optional[str] = None
    text: Optional[str] = None
    subject: Optional[str] = None
    publisher: Optional[str] = None


def _page_params(options: PageOptions, with_language: bool = True) -> Dict[str, str]:
    params = {"page": str(options.page), "pageSize": str(options.page_size)}
    if with_language and options.language:
        params["language"] = options.language
    return params


class IsbndbClient:
    """Thin wrapper over the ISBNdb REST endpoints.

    Settings are fixed at construction. Every public call fails fast with
    IsbndbConfigurationError when the client is disabled.
    """

    def __init__(
        self,
        settings: Optional[IsbndbSettings] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings or IsbndbSettings.from_env()
        # One session for connection pooling and consistent auth headers.
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": self._settings.api_key,
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            }
        )

    @property
    def settings(self) -> IsbndbSettings:
        return self._settings

    def is_enabled(self) -> bool:
        """Whether the client is configured to make network calls."""
        return self._settings.enabled

    def get_config(self) -> Dict[str, Any]:
        return {
            "enabled": self._settings.enabled,
            "has_api_key": len(self._settings.api_key) > 0,
            "base_url": self._settings.base_url,
        }

    def _request(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        if not self.is_enabled():
            raise IsbndbConfigurationError(
                "ISBNdb service is not enabled or API key is missing"
            )

        url = f"{self._settings.base_url}{path}"
        logger.debug(f"Making ISBNdb request to {url} params={params}")
        try:
            response = self._session.get(
                url, params=params, timeout=self._settings.timeout
            )
        except requests.Timeout as e:
            raise IsbndbTransportError(f"ISBNdb request timed out: {url}") from e
        except requests.RequestException as e:
            raise IsbndbTransportError(f"ISBNdb request failed: {url}: {e}") from e

        if response.status_code == 404:
            logger.info(f"ISBNdb returned 404 for {url}")
            raise IsbndbNotFoundError(f"Not found: {path}")

        if not 200 <= response.status_code < 300:
            message = f"ISBNdb API error: {response.status_code} {response.reason or ''}".rstrip()
            logger.error(f"{message} (url={url})")
            raise IsbndbUpstreamError(response.status_code, message)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise IsbndbUpstreamError(
                response.status_code, f"ISBNdb returned invalid JSON for {url}"
            ) from e

    def lookup_book_by_isbn(self, isbn: str, with_prices: bool = False) -> BookResponse:
        """Fetch a single book by ISBN-10 or ISBN-13."""
        clean = clean_isbn(isbn)
        params = {"with_prices": "1"} if with_prices else None
        response = self._request(f"/book/{quote(clean, safe='')}", params)
        logger.info(f"Book found via ISBNdb: {clean}")
        return cast(BookResponse, response)

    def search_books(
        self, query: str, options: Optional[BookSearchOptions] = None
    ) -> BookSearchResponse:
        """Search books by free text, optionally restricted to one column."""
        options = options or BookSearchOptions()
        if options.column not in SEARCH_COLUMNS:
            raise ValueError(f"Unsupported search column: {options.column!r}")

        params: Dict[str, str] = {
            "page": str(options.page),
            "pageSize": str(options.page_size),
            "column": options.column,
        }
        if options.year:
            params["year"] = str(options.year)
        if options.edition:
            params["edition"] = str(options.edition)
        if options.language:
            params["language"] = options.language
        params["shouldMatchAll"] = "1" if options.should_match_all else "0"

        response = cast(
            BookSearchResponse,
            self._request(f"/books/{quote(query, safe='')}", params),
        )
        logger.info(
            f"Books search completed for {query!r}: "
            f"total={response.get('total')} results={len(response.get('books') or [])}"
        )
        return response

    def get_author_details(
        self, name: str, options: Optional[PageOptions] = None
    ) -> AuthorResponse:
        options = options or PageOptions()
        response = cast(
            AuthorResponse,
            self._request(f"/author/{quote(name, safe='')}", _page_params(options)),
        )
        logger.info(
            f"Author details found: {name} ({len(response.get('books') or [])} books)"
        )
        return response

    def search_authors(
        self, query: str, options: Optional[PageOptions] = None
    ) -> AuthorSearchResponse:
        options = options or PageOptions()
        return cast(
            AuthorSearchResponse,
            self._request(
                f"/authors/{quote(query, safe='')}",
                _page_params(options, with_language=False),
            ),
        )

    def get_publisher_details(
        self, name: str, options: Optional[PageOptions] = None
    ) -> PublisherResponse:
        options = options or PageOptions()
        response = cast(
            PublisherResponse,
            self._request(f"/publisher/{quote(name, safe='')}", _page_params(options)),
        )
        logger.info(
            f"Publisher details found: {name} ({len(response.get('books') or [])} books)"
        )
        return response

    def search_publishers(
        self, query: str, options: Optional[PageOptions] = None
    ) -> PublisherSearchResponse:
        options = options or PageOptions()
        return cast(
            PublisherSearchResponse,
            self._request(
                f"/publishers/{quote(query, safe='')}",
                _page_params(options, with_language=False),
            ),
        )

    def search_all(self, index: str, filters: Optional[SearchAllFilters] = None) -> Any:
        """Search one ISBNdb index; the payload shape depends on the index."""
        if index not in SEARCH_INDEXES:
            raise ValueError(f"Unsupported search index: {index!r}")
        filters = filters or SearchAllFilters()

        params: Dict[str, str] = {
            "page": str(filters.page),
            "pageSize": str(filters.page_size),
        }
        for field in ("isbn", "isbn13", "author", "text", "subject", "publisher"):
            value = getattr(filters, field)
            if value:
                params[field] = value

        return self._request(f"/search/{index}", params)

    def get_stats(self) -> Any:
        """Database statistics published by ISBNdb."""
        return self._request("/stats")
