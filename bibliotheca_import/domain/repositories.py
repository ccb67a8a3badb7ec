"""
Repository interfaces for the import pipeline.

The importer only needs a narrow slice of the library store: lookups for duplicate
detection, book and collection creation, and the import history log.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .models import Book, Collection, ImportHistoryEntry


class BookRepository(ABC):
    """Repository interface for Book operations."""

    @abstractmethod
    def find_books_by_isbn(self, user_id: str, isbn: str) -> List[Book]:
        """Get a user's books with this ISBN (case-insensitive)."""
        pass

    @abstractmethod
    def find_books_by_title_author(self, user_id: str, title: str, author: str) -> List[Book]:
        """Get a user's books matching title and author (case-insensitive)."""
        pass

    @abstractmethod
    def create_book(self, book: Book, enforce_unique: bool = True) -> Book:
        """Create a book. Raises BookAlreadyExistsError if enforce_unique and a match exists."""
        pass


class CollectionRepository(ABC):
    """Repository interface for Collection operations."""

    @abstractmethod
    def find_collection_by_name(self, user_id: str, name: str) -> Optional[Collection]:
        """Get a user's collection by name (case-insensitive)."""
        pass

    @abstractmethod
    def create_collection(self, collection: Collection) -> Collection:
        """Create a collection. Raises CollectionAlreadyExistsError on a name clash."""
        pass

    @abstractmethod
    def add_book_to_collection(self, user_id: str, book_id: str, collection_id: str) -> bool:
        """Attach a book to a collection. Returns False if it was already attached."""
        pass


class ImportHistoryRepository(ABC):
    """Repository interface for the import audit log."""

    @abstractmethod
    def create_import_history(self, entry: ImportHistoryEntry) -> ImportHistoryEntry:
        """Persist a finished run."""
        pass

    @abstractmethod
    def get_import_history(self, user_id: str, limit: int = 10) -> List[ImportHistoryEntry]:
        """Get a user's runs, newest first."""
        pass


class LibraryRepository(BookRepository, CollectionRepository, ImportHistoryRepository):
    """Everything the importer consumes from the library store."""
    pass
