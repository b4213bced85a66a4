from .books import alternate_isbn, clean_isbn, isbn10_to_isbn13, parse_publication_year

__all__ = ["alternate_isbn", "clean_isbn", "isbn10_to_isbn13", "parse_publication_year"]
