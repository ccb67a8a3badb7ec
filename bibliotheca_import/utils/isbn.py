"""ISBN and spreadsheet cell helpers used by the CSV parser and enrichment."""

import re
from typing import List, Optional

_ISBN10_SHAPE = re.compile(r'^[0-9]{9}[0-9X]$')
_ISBN13_SHAPE = re.compile(r'^[0-9]{13}$')


def clean_excel_value(value) -> str:
    """
    Normalize values from Goodreads CSV exports that use Excel text formatting.
    Goodreads exports often have values like ="123456789" or ="" to force text formatting.
    """
    if value is None:
        return ''
    value = str(value).strip()
    if not value:
        return ''

    # Remove Excel text formatting: ="value" -> value
    if value == '=""':
        return ''
    if value.startswith('="') and value.endswith('"'):
        value = value[2:-1]
    elif value.startswith('=') and value.endswith('"') and len(value) >= 2:
        value = value[1:-1]
    return value.strip()


def clean_isbn(raw) -> Optional[str]:
    """Return a shape-valid ISBN-10/13 (digits and X only) or None."""
    value = clean_excel_value(raw).upper()
    if not value:
        return None
    value = re.sub(r'[^0-9X]', '', value)
    if _ISBN13_SHAPE.match(value) or _ISBN10_SHAPE.match(value):
        return value
    return None


def is_valid_isbn10(v: str) -> bool:
    if not v or not _ISBN10_SHAPE.match(v.upper()):
        return False
    total = 0
    for i, ch in enumerate(v[:9]):
        total += (10 - i) * int(ch)
    check = v[9]
    total += 10 if check in 'Xx' else int(check)
    return total % 11 == 0


def is_valid_isbn13(v: str) -> bool:
    if not v or not _ISBN13_SHAPE.match(v):
        return False
    if not (v.startswith('978') or v.startswith('979')):
        return False
    s = 0
    for i, ch in enumerate(v[:12]):
        s += (1 if i % 2 == 0 else 3) * int(ch)
    return (10 - (s % 10)) % 10 == int(v[12])


def isbn10_to_isbn13(isbn10: str) -> Optional[str]:
    if not isbn10 or not _ISBN10_SHAPE.match(isbn10.upper()):
        return None
    core = '978' + isbn10[:9]
    s = sum((1 if i % 2 == 0 else 3) * int(ch) for i, ch in enumerate(core))
    return core + str((10 - (s % 10)) % 10)


def isbn13_to_isbn10(isbn13: str) -> Optional[str]:
    # Only 978-prefixed ISBN-13s have an ISBN-10 form
    if not isbn13 or not _ISBN13_SHAPE.match(isbn13) or not isbn13.startswith('978'):
        return None
    core = isbn13[3:12]
    total = sum((10 - i) * int(ch) for i, ch in enumerate(core))
    check = (11 - (total % 11)) % 11
    return core + ('X' if check == 10 else str(check))


def isbn_variants(isbn: Optional[str]) -> List[str]:
    """The ISBN itself followed by its 10/13 counterpart, if one exists."""
    value = clean_isbn(isbn)
    if not value:
        return []
    variants = [value]
    other = isbn13_to_isbn10(value) if len(value) == 13 else isbn10_to_isbn13(value)
    if other and other not in variants:
        variants.append(other)
    return variants
