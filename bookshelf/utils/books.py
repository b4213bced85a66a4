import re
from typing import Optional


def clean_isbn(isbn: Optional[str]) -> str:
    """Strip everything except digits and 'X' from an ISBN.

    The check is case-insensitive and a lowercase 'x' is returned uppercase,
    so "0-8044-2957-x" becomes "080442957X".
    """
    if not isbn:
        return ""
    return re.sub(r"[^0-9X]", "", str(isbn).upper())


def _isbn13_check_digit(first12: str) -> str:
    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(first12))
    return str(-total % 10)


def _isbn10_check_char(first9: str) -> str:
    total = sum(int(d) * (10 - i) for i, d in enumerate(first9))
    check = -total % 11
    return "X" if check == 10 else str(check)


def is_valid_isbn13(isbn: str) -> bool:
    """True for 13 digits whose last digit is the EAN-13 check digit."""
    if len(isbn) != 13 or not isbn.isdigit():
        return False
    return _isbn13_check_digit(isbn[:12]) == isbn[12]


def is_valid_isbn10(isbn: str) -> bool:
    """Validate ISBN-10 (nine digits plus a digit or 'X' check character)."""
    if len(isbn) != 10 or not isbn[:9].isdigit():
        return False
    return _isbn10_check_char(isbn[:9]) == isbn[9]


def parse_publication_year(publish_date: Optional[str]) -> Optional[int]:
    """
    Extract a 4-digit year from various date string formats.
    Examples: '2023', 'May 2023', '2023-05-01', '2018-01-06T00:00:01Z'
    """
    if not publish_date:
        return None

    normalized = str(publish_date).replace("T", " ")
    # Split by common delimiters and look for a 4-digit number
    for token in (
        normalized.replace("-", " ").replace("/", " ").replace(",", " ").split()
    ):
        if len(token) == 4 and token.isdigit():
            return int(token)
    return None


def isbn10_to_isbn13(isbn10: str) -> Optional[str]:
    """Convert ISBN-10 to ISBN-13 under the 978 prefix."""
    clean = clean_isbn(isbn10)
    if len(clean) != 10 or not clean[:9].isdigit():
        return None
    core = "978" + clean[:9]
    return core + _isbn13_check_digit(core)


def isbn13_to_isbn10(isbn13: str) -> Optional[str]:
    """Convert ISBN-13 to ISBN-10.

    Only ISBN-13s with the 978 prefix have an ISBN-10 form.
    """
    clean = clean_isbn(isbn13)
    if len(clean) != 13 or not clean.startswith("978") or not clean.isdigit():
        return None
    core = clean[3:12]
    return core + _isbn10_check_char(core)


def alternate_isbn(isbn: str) -> Optional[str]:
    """The other form of a valid ISBN (10 -> 13, 978-prefixed 13 -> 10)."""
    clean = clean_isbn(isbn)
    if is_valid_isbn10(clean):
        return isbn10_to_isbn13(clean)
    if is_valid_isbn13(clean):
        return isbn13_to_isbn10(clean)
    return None
