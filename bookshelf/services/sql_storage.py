"""Relational storage adapter for cached ISBNdb data."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from bookshelf.models import Author, Book, Publisher

logger = logging.getLogger("bookshelf.cache")

BOOK_FIELDS = (
    "isbn",
    "isbn13",
    "title",
    "overview",
    "published_year",
    "pages",
    "image",
    "author_id",
    "publisher_id",
)


def _book_to_dict(book: Book) -> Dict[str, Any]:
    return {
        "id": book.id,
        "isbn": book.isbn,
        "isbn13": book.isbn13,
        "title": book.title,
        "overview": book.overview,
        "published_year": book.published_year,
        "pages": book.pages,
        "image": book.image,
        "author_id": book.author_id,
        "publisher_id": book.publisher_id,
        "author": book.author.name if book.author else None,
        "publisher": book.publisher.name if book.publisher else None,
        "created_at": book.created_at.isoformat() if book.created_at else None,
    }


def _named_to_dict(row: Any) -> Dict[str, Any]:
    return {"id": row.id, "name": row.name}


class SQLStorage:
    """Storage backed by the Flask-SQLAlchemy models.

    Each write commits on its own. Ensuring an author or publisher and then
    upserting the book are separate statements, so a failure in between can
    leave an unreferenced author or publisher row behind.
    """

    def __init__(self, session: Session):
        self.session = session

    def find_book_by_isbn(self, isbn: str) -> Optional[Dict[str, Any]]:
        """Find a book whose ISBN-10 or ISBN-13 column equals the given value."""
        book = (
            self.session.execute(
                select(Book).where(or_(Book.isbn == isbn, Book.isbn13 == isbn))
            )
            .scalars()
            .first()
        )
        return _book_to_dict(book) if book else None

    def find_book_by_exact_isbn(self, isbn: str) -> Optional[Dict[str, Any]]:
        book = (
            self.session.execute(select(Book).where(Book.isbn == isbn))
            .scalars()
            .first()
        )
        return _book_to_dict(book) if book else None

    def add_book(self, **fields: Any) -> Dict[str, Any]:
        book = Book(**{k: v for k, v in fields.items() if k in BOOK_FIELDS})
        self.session.add(book)
        self.session.commit()
        return _book_to_dict(book)

    def update_book_by_isbn(self, isbn: str, **fields: Any) -> Optional[Dict[str, Any]]:
        """Update every book whose ISBN column equals isbn; return the first."""
        books = self.session.execute(select(Book).where(Book.isbn == isbn)).scalars().all()
        if not books:
            return None
        for book in books:
            for key, value in fields.items():
                if key in BOOK_FIELDS and key != "isbn":
                    setattr(book, key, value)
        self.session.commit()
        return _book_to_dict(books[0])

    def find_author_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        author = (
            self.session.execute(
                select(Author).where(Author.name == name).order_by(Author.id)
            )
            .scalars()
            .first()
        )
        return _named_to_dict(author) if author else None

    def add_author(self, name: str) -> Dict[str, Any]:
        author = Author(name=name)
        self.session.add(author)
        self.session.commit()
        return _named_to_dict(author)

    def find_publisher_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        publisher = (
            self.session.execute(
                select(Publisher).where(Publisher.name == name).order_by(Publisher.id)
            )
            .scalars()
            .first()
        )
        return _named_to_dict(publisher) if publisher else None

    def add_publisher(self, name: str) -> Dict[str, Any]:
        publisher = Publisher(name=name)
        self.session.add(publisher)
        self.session.commit()
        return _named_to_dict(publisher)

    def search_books_by_title(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        books = (
            self.session.execute(
                select(Book)
                .where(Book.title.ilike(f"%{query}%"))
                .order_by(Book.id)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [_book_to_dict(book) for book in books]

    def _count(self, model: Any) -> int:
        return int(self.session.execute(select(func.count(model.id))).scalar_one())

    def count_books(self) -> int:
        return self._count(Book)

    def count_authors(self) -> int:
        return self._count(Author)

    def count_publishers(self) -> int:
        return self._count(Publisher)
