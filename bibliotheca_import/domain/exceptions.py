"""
Exceptions raised by the import pipeline.

File and configuration problems are fatal to a request and raised before any work
happens. Row problems are recorded in diagnostics or the run result and never stop
the import loop.
"""

from typing import Optional


class BibliothecaImportError(Exception):
    """Base class for import pipeline errors."""


class ValidationError(BibliothecaImportError):
    """Bad file type, size, missing file or malformed options."""


class NoValidRowsError(ValidationError):
    """Parsing finished but no row survived."""

    def __init__(self, message: str = "No valid books found in CSV", diagnostics=None):
        self.diagnostics = diagnostics
        super().__init__(message)


class RowParseError(BibliothecaImportError):
    """A single CSV row could not be turned into a candidate record."""

    def __init__(self, row_index: int, message: str):
        self.row_index = row_index
        super().__init__(message)


class RowImportError(BibliothecaImportError):
    """Dedup, enrichment or persistence failed for one normalized candidate."""

    def __init__(self, row_index: int, message: str, cause: Optional[BaseException] = None):
        self.row_index = row_index
        self.cause = cause
        super().__init__(message)


class HistoryPersistError(BibliothecaImportError):
    """The audit record of a finished run could not be written."""


class BookAlreadyExistsError(Exception):
    """Raised by the store when an insert would create a duplicate book."""

    def __init__(self, book_id: str, message: str = "Book already exists"):
        self.book_id = book_id
        super().__init__(message)


class CollectionAlreadyExistsError(Exception):
    """Raised by the store when a collection with the same name exists for the user."""

    def __init__(self, collection_id: str, message: str = "Collection already exists"):
        self.collection_id = collection_id
        super().__init__(message)
