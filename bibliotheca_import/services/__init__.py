"""
Import services:
- DeduplicationChecker: duplicate detection against the user's library
- EnrichmentClient: external metadata lookup (Google Books, OpenLibrary)
- CollectionResolver: shelves to collections
- ImportOrchestrator: the import state machine
"""

from .collection_service import CollectionResolver
from .deduplication_service import DeduplicationChecker, books_match
from .enrichment_service import EnrichmentClient, merge_book_metadata
from .import_service import ImportOrchestrator, ImportSession

__all__ = [
    'CollectionResolver',
    'DeduplicationChecker',
    'EnrichmentClient',
    'ImportOrchestrator',
    'ImportSession',
    'books_match',
    'merge_book_metadata',
]
