"""
Best-effort metadata enrichment for imported books.

EnrichmentClient looks a candidate up on Google Books (and, in thorough mode,
OpenLibrary) to fill fields the spreadsheet left empty. It never raises: any
network, timeout or parsing problem yields an empty BookMetadata and the import
continues with what the CSV provided.

Precedence when building the final record is manual override > CSV > enrichment.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..domain.models import BookMetadata, ENRICHABLE_FIELDS, NormalizedCandidate
from ..utils.genre_mapping import normalize_genres
from ..utils.isbn import isbn_variants
from ..utils.unified_metadata import (
    _fetch_google_by_isbn,
    _fetch_google_by_query,
    _fetch_openlibrary_by_isbn,
    merge_provider_data,
)

logger = logging.getLogger(__name__)

MERGED_FIELDS = ('title', 'author', 'isbn') + ENRICHABLE_FIELDS


def _csv_values(candidate: NormalizedCandidate) -> Dict[str, Any]:
    return {
        'title': candidate.title,
        'author': candidate.author,
        'isbn': candidate.isbn,
        'cover_url': None,
        'description': None,
        'genre': candidate.genre,
        'page_count': candidate.page_count,
        'publisher': candidate.publisher,
        'published_date': candidate.published_date,
    }


def _present(value) -> bool:
    return value not in (None, '', [])


def missing_fields(candidate: NormalizedCandidate, override: Optional[BookMetadata] = None) -> List[str]:
    """Enrichable fields that neither the CSV row nor the manual override supply."""
    csv_values = _csv_values(candidate)
    missing = []
    for name in ENRICHABLE_FIELDS:
        if _present(getattr(override, name, None)) or _present(csv_values.get(name)):
            continue
        missing.append(name)
    return missing


def merge_book_metadata(candidate: NormalizedCandidate, override: Optional[BookMetadata] = None,
                        enrichment: Optional[BookMetadata] = None) -> Dict[str, Any]:
    """Final field values for a row: override wins, then CSV, then enrichment fills gaps."""
    csv_values = _csv_values(candidate)
    merged: Dict[str, Any] = {}
    for name in MERGED_FIELDS:
        for source in (getattr(override, name, None), csv_values.get(name)):
            if _present(source):
                merged[name] = source
                break
        else:
            enriched = getattr(enrichment, name, None) if name in ENRICHABLE_FIELDS else None
            merged[name] = enriched if _present(enriched) else None
    return merged


def _first_author(author: str) -> str:
    return (author or '').split(',')[0].strip()


def _to_metadata(data: Dict[str, Any]) -> BookMetadata:
    if not data:
        return BookMetadata()
    page_count = data.get('page_count')
    try:
        page_count = int(page_count) if page_count else None
    except (TypeError, ValueError):
        page_count = None
    cover_url = data.get('cover_url')
    return BookMetadata(
        cover_url=cover_url.replace('http://', 'https://') if cover_url else None,
        description=data.get('description') or None,
        genre=normalize_genres(data.get('categories') or []),
        page_count=page_count,
        publisher=data.get('publisher') or None,
        published_date=data.get('published_date') or None,
    )


class EnrichmentClient:
    """External metadata lookup with a fast (single call) and thorough (fallbacks) mode."""

    def __init__(self, session=None, fast_timeout: float = 3.0, timeout: float = 10.0,
                 max_retries: int = 3):
        self.session = session if session is not None else requests.Session()
        self.fast_timeout = fast_timeout
        self.timeout = timeout
        self.max_retries = max_retries

    def enrich(self, candidate: NormalizedCandidate, fast: bool = False) -> BookMetadata:
        try:
            data = self._lookup_fast(candidate) if fast else self._lookup_thorough(candidate)
            metadata = _to_metadata(data)
        except Exception as exc:
            logger.warning(f"Enrichment failed for row {candidate.source_row_index} "
                           f"('{candidate.title}'): {exc}")
            return BookMetadata()
        if metadata.is_empty():
            logger.info(f"No enrichment data for '{candidate.title}' by {candidate.author}")
        return metadata

    def _query_strategies(self, candidate: NormalizedCandidate) -> List[tuple]:
        title = candidate.title
        author = _first_author(candidate.author)
        last_name = author.split()[-1] if author else ''
        strategies = [(f'intitle:"{title}" inauthor:"{author}"', title)]
        if last_name and last_name != author:
            strategies.append((f'intitle:"{title}" inauthor:"{last_name}"', title))
        if ':' in title:
            short_title = title.split(':')[0].strip()
            strategies.append((f'intitle:"{short_title}" inauthor:"{author}"', short_title))
        strategies.append((f'{title} {author}', title))
        strategies.append((f'intitle:"{title}"', title))
        return strategies

    def _lookup_fast(self, candidate: NormalizedCandidate) -> Dict[str, Any]:
        if candidate.isbn:
            return _fetch_google_by_isbn(candidate.isbn, session=self.session,
                                         timeout=self.fast_timeout, max_retries=1)
        query, expected = self._query_strategies(candidate)[0]
        return _fetch_google_by_query(query, expected_title=expected, session=self.session,
                                      timeout=self.fast_timeout, max_retries=1)

    def _lookup_thorough(self, candidate: NormalizedCandidate) -> Dict[str, Any]:
        google: Dict[str, Any] = {}
        for isbn in isbn_variants(candidate.isbn):
            google = _fetch_google_by_isbn(isbn, session=self.session, timeout=self.timeout,
                                           max_retries=self.max_retries)
            if google:
                break
        if not google:
            for query, expected in self._query_strategies(candidate):
                google = _fetch_google_by_query(query, expected_title=expected, session=self.session,
                                                timeout=self.timeout, max_retries=self.max_retries)
                if google:
                    break

        openlib: Dict[str, Any] = {}
        lookup_isbn = candidate.isbn or google.get('isbn13') or google.get('isbn10')
        if lookup_isbn:
            openlib = _fetch_openlibrary_by_isbn(lookup_isbn, session=self.session, timeout=self.timeout,
                                                 max_retries=self.max_retries)
        if not google and not openlib:
            return {}
        return merge_provider_data(google, openlib)
