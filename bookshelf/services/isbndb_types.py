"""Response shapes returned by the ISBNdb v2 API.

Only the fields the application reads are listed; upstream payloads may carry
more and those are passed through untouched.
"""

from typing import Any, Dict, List, TypedDict


class IsbndbBook(TypedDict, total=False):
    title: str
    title_long: str
    isbn: str
    isbn10: str
    isbn13: str
    dewey_decimal: str
    binding: str
    publisher: str
    language: str
    date_published: str
    edition: str
    pages: int
    dimensions: str
    overview: str
    image: str
    msrp: float
    excerpt: str
    synopsis: str
    authors: List[str]
    subjects: List[str]
    reviews: List[str]
    prices: List[Dict[str, Any]]
    related: Dict[str, Any]


class BookResponse(TypedDict, total=False):
    book: IsbndbBook


class BookSearchResponse(TypedDict, total=False):
    total: int
    books: List[IsbndbBook]


class AuthorResponse(TypedDict, total=False):
    author: str
    books: List[IsbndbBook]


class AuthorSearchResponse(TypedDict, total=False):
    total: int
    authors: List[str]


class PublisherResponse(TypedDict, total=False):
    publisher: str
    books: List[Dict[str, str]]


class PublisherSearchResponse(TypedDict, total=False):
    total: int
    publishers: List[str]
