"""
In-process implementation of the library repository.

Each user's books, collections and import history live behind a per-user RLock,
so concurrent import runs for the same user serialize their writes while runs for
different users never contend. Inserts re-check the duplicate policy under the
lock, which makes the importer's pre-check race-free.
"""

import logging
import threading
from typing import Dict, List, Optional

from ..domain.exceptions import BookAlreadyExistsError, CollectionAlreadyExistsError
from ..domain.models import Book, Collection, ImportHistoryEntry
from ..domain.repositories import LibraryRepository
from ..services.deduplication_service import books_match

logger = logging.getLogger(__name__)


class _UserLibrary:
    def __init__(self):
        self.books: Dict[str, Book] = {}
        self.collections: Dict[str, Collection] = {}
        self.history: List[ImportHistoryEntry] = []


class InMemoryLibraryRepository(LibraryRepository):
    """Thread-safe, process-local library store."""

    def __init__(self):
        self._libraries: Dict[str, _UserLibrary] = {}
        self._locks_by_user: Dict[str, threading.RLock] = {}
        self._global_lock = threading.RLock()

    def _get_user_lock(self, user_id: str) -> threading.RLock:
        with self._global_lock:
            if user_id not in self._locks_by_user:
                self._locks_by_user[user_id] = threading.RLock()
            return self._locks_by_user[user_id]

    def _library(self, user_id: str) -> _UserLibrary:
        with self._global_lock:
            return self._libraries.setdefault(user_id, _UserLibrary())

    # Books

    def find_books_by_isbn(self, user_id: str, isbn: str) -> List[Book]:
        if not isbn:
            return []
        key = isbn.strip().upper()
        with self._get_user_lock(user_id):
            return [b for b in self._library(user_id).books.values() if b.normalized_isbn == key]

    def find_books_by_title_author(self, user_id: str, title: str, author: str) -> List[Book]:
        title_key = (title or '').strip().lower()
        author_key = (author or '').strip().lower()
        with self._get_user_lock(user_id):
            return [
                b for b in self._library(user_id).books.values()
                if b.normalized_title == title_key and b.normalized_author == author_key
            ]

    def create_book(self, book: Book, enforce_unique: bool = True) -> Book:
        with self._get_user_lock(book.user_id):
            library = self._library(book.user_id)
            if enforce_unique:
                for existing in library.books.values():
                    if books_match(book.isbn, book.title, book.author, existing):
                        raise BookAlreadyExistsError(
                            existing.id, f"'{book.title}' by {book.author} already exists")
            library.books[book.id] = book
            logger.debug(f"Stored book {book.id} for user {book.user_id}")
            return book

    def get_book(self, user_id: str, book_id: str) -> Optional[Book]:
        with self._get_user_lock(user_id):
            return self._library(user_id).books.get(book_id)

    def get_books(self, user_id: str) -> List[Book]:
        with self._get_user_lock(user_id):
            return list(self._library(user_id).books.values())

    # Collections

    def find_collection_by_name(self, user_id: str, name: str) -> Optional[Collection]:
        key = (name or '').strip().lower()
        with self._get_user_lock(user_id):
            for collection in self._library(user_id).collections.values():
                if collection.normalized_name == key:
                    return collection
        return None

    def create_collection(self, collection: Collection) -> Collection:
        with self._get_user_lock(collection.user_id):
            existing = self.find_collection_by_name(collection.user_id, collection.name)
            if existing is not None:
                raise CollectionAlreadyExistsError(existing.id, f"Collection '{collection.name}' already exists")
            self._library(collection.user_id).collections[collection.id] = collection
            return collection

    def add_book_to_collection(self, user_id: str, book_id: str, collection_id: str) -> bool:
        with self._get_user_lock(user_id):
            collection = self._library(user_id).collections.get(collection_id)
            if collection is None:
                raise KeyError(f"Collection {collection_id} not found for user {user_id}")
            if book_id in collection.book_ids:
                return False
            collection.book_ids.append(book_id)
            return True

    def get_collections(self, user_id: str) -> List[Collection]:
        with self._get_user_lock(user_id):
            return list(self._library(user_id).collections.values())

    # Import history

    def create_import_history(self, entry: ImportHistoryEntry) -> ImportHistoryEntry:
        with self._get_user_lock(entry.user_id):
            history = self._library(entry.user_id).history
            if any(e.id == entry.id for e in history):
                raise ValueError(f"Import history entry {entry.id} already recorded")
            history.append(entry)
            return entry

    def get_import_history(self, user_id: str, limit: int = 10) -> List[ImportHistoryEntry]:
        with self._get_user_lock(user_id):
            history = sorted(reversed(self._library(user_id).history), key=lambda e: e.imported_at, reverse=True)
        return history[:limit] if limit else history
