import threading


class MockStorage:
    """In-memory storage with the same interface as SQLStorage.

    Shared between request threads and the lookup queue worker, so writes
    hold a lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.books = []
        self.authors = []
        self.publishers = []
        self.next_book_id = 1
        self.next_author_id = 1
        self.next_publisher_id = 1

    def _name_of(self, rows, row_id):
        for row in rows:
            if row["id"] == row_id:
                return row["name"]
        return None

    def _with_names(self, book):
        view = dict(book)
        view["author"] = self._name_of(self.authors, book["author_id"])
        view["publisher"] = self._name_of(self.publishers, book["publisher_id"])
        return view

    def find_book_by_isbn(self, isbn):
        for book in self.books:
            if book["isbn"] == isbn or book["isbn13"] == isbn:
                return self._with_names(book)
        return None

    def find_book_by_exact_isbn(self, isbn):
        for book in self.books:
            if book["isbn"] == isbn:
                return self._with_names(book)
        return None

    def add_book(
        self,
        title,
        author_id,
        publisher_id,
        isbn=None,
        isbn13=None,
        overview=None,
        published_year=None,
        pages=None,
        image=None,
    ):
        with self._lock:
            book = {
                "id": self.next_book_id,
                "isbn": isbn,
                "isbn13": isbn13,
                "title": title,
                "overview": overview,
                "published_year": published_year,
                "pages": pages,
                "image": image,
                "author_id": author_id,
                "publisher_id": publisher_id,
                "created_at": "2024-01-01T00:00:00",
            }
            self.books.append(book)
            self.next_book_id += 1
        return self._with_names(book)

    def update_book_by_isbn(self, isbn, **fields):
        with self._lock:
            updated = [book for book in self.books if book["isbn"] == isbn]
            for book in updated:
                book.update(
                    {k: v for k, v in fields.items() if k in book and k != "isbn"}
                )
        if not updated:
            return None
        return self._with_names(updated[0])

    def find_author_by_name(self, name):
        for author in self.authors:
            if author["name"] == name:
                return dict(author)
        return None

    def add_author(self, name):
        with self._lock:
            author = {"id": self.next_author_id, "name": name}
            self.authors.append(author)
            self.next_author_id += 1
        return dict(author)

    def find_publisher_by_name(self, name):
        for publisher in self.publishers:
            if publisher["name"] == name:
                return dict(publisher)
        return None

    def add_publisher(self, name):
        with self._lock:
            publisher = {"id": self.next_publisher_id, "name": name}
            self.publishers.append(publisher)
            self.next_publisher_id += 1
        return dict(publisher)

    def search_books_by_title(self, query, limit=20):
        needle = query.lower()
        matches = [b for b in self.books if needle in (b["title"] or "").lower()]
        return [self._with_names(b) for b in matches[:limit]]

    def count_books(self):
        return len(self.books)

    def count_authors(self):
        return len(self.authors)

    def count_publishers(self):
        return len(self.publishers)
