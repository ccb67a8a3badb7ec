"""Duplicate detection for imported books."""

import logging
from typing import Optional

from ..domain.models import Book, NormalizedCandidate
from ..domain.repositories import BookRepository

logger = logging.getLogger(__name__)


def _norm(value: Optional[str]) -> str:
    return (value or '').strip().lower()


def books_match(isbn: Optional[str], title: str, author: str, existing: Book) -> bool:
    """
    Match policy shared by the pre-check and the store's insert-time check:
    ISBNs are compared when both sides have one; otherwise title and author must
    both match, ignoring case.
    """
    if isbn and existing.isbn:
        return _norm(isbn) == _norm(existing.isbn)
    return _norm(title) == existing.normalized_title and _norm(author) == existing.normalized_author


class DeduplicationChecker:
    """Decides whether a normalized candidate already exists in a user's library."""

    def is_duplicate(self, candidate: NormalizedCandidate, lookup: BookRepository, user_id: str) -> bool:
        if candidate.isbn and lookup.find_books_by_isbn(user_id, candidate.isbn):
            logger.debug(f"Row {candidate.source_row_index}: ISBN {candidate.isbn} already in library")
            return True

        for book in lookup.find_books_by_title_author(user_id, candidate.title, candidate.author):
            if books_match(candidate.isbn, candidate.title, candidate.author, book):
                logger.debug(f"Row {candidate.source_row_index}: '{candidate.title}' already in library")
                return True
        return False
