"""
Domain models for the CSV import pipeline.

These models describe the records that flow through one import run, from the raw
spreadsheet row to the persisted audit entry. They are independent of how the
library store persists books and collections.
"""

from dataclasses import dataclass, field, fields as dataclass_fields
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Set
from enum import Enum
import json
import uuid


def now_utc() -> datetime:
    """Timezone-aware UTC now for default timestamps (avoid datetime.utcnow deprecation)."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class ReadingStatus(Enum):
    """Canonical reading status; raw source vocabulary never leaves the normalizer."""
    WANT_TO_READ = "Want to Read"
    CURRENTLY_READING = "Currently Reading"
    FINISHED = "Finished"


class ImportOutcome(Enum):
    """Per-row outcome of an import run."""
    IMPORTED = "imported"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


class ImportState(Enum):
    """Lifecycle of a single import run."""
    IDLE = "idle"
    PARSING = "parsing"
    NORMALIZING = "normalizing"
    IMPORTING = "importing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class RowIssue:
    """A parse problem tied to a data row (-1 for the header)."""
    row_index: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {'rowIndex': self.row_index, 'reason': self.reason}


@dataclass
class ParseDiagnostics:
    """Errors drop a row; warnings keep it. At most one warning per row."""
    errors: List[RowIssue] = field(default_factory=list)
    warnings: List[RowIssue] = field(default_factory=list)

    def add_error(self, row_index: int, reason: str) -> None:
        self.errors.append(RowIssue(row_index, reason))

    def add_warning(self, row_index: int, reason: str) -> bool:
        if any(w.row_index == row_index for w in self.warnings):
            return False
        self.warnings.append(RowIssue(row_index, reason))
        return True

    @property
    def dropped_rows(self) -> Set[int]:
        return {e.row_index for e in self.errors if e.row_index >= 0}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'errors': [e.to_dict() for e in self.errors],
            'warnings': [w.to_dict() for w in self.warnings],
        }


@dataclass
class CandidateRecord:
    """Typed output of the CSV parser for one surviving data row."""
    title: str
    author: str
    source_row_index: int
    isbn: Optional[str] = None
    genre_raw: Optional[str] = None
    rating_raw: Optional[str] = None
    status_raw: Optional[str] = None
    shelves_raw: List[str] = field(default_factory=list)
    date_added_raw: Optional[str] = None
    date_finished_raw: Optional[str] = None

    # Goodreads passthrough columns
    review_raw: Optional[str] = None
    page_count_raw: Optional[str] = None
    publisher_raw: Optional[str] = None
    year_published_raw: Optional[str] = None
    external_id: Optional[str] = None


@dataclass
class NormalizedCandidate:
    """A candidate after author, title/series and status canonicalization."""
    title: str
    author: str
    reading_status: ReadingStatus
    source_row_index: int
    series: Optional[str] = None
    series_number: Optional[int] = None
    isbn: Optional[str] = None
    genre: Optional[str] = None
    rating: Optional[int] = None
    shelves: List[str] = field(default_factory=list)
    date_added: Optional[str] = None
    date_finished: Optional[str] = None
    review: Optional[str] = None
    page_count: Optional[int] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    external_id: Optional[str] = None
    original_title: Optional[str] = None
    original_author: Optional[str] = None
    # True when reading_status was defaulted rather than read from the row
    status_guessed: bool = False

    @property
    def display_name(self) -> str:
        return f"{self.title} by {self.author}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rowIndex': self.source_row_index,
            'title': self.title,
            'author': self.author,
            'series': self.series,
            'seriesNumber': self.series_number,
            'isbn': self.isbn,
            'genre': self.genre,
            'rating': self.rating,
            'readingStatus': self.reading_status.value,
            'statusGuessed': self.status_guessed,
            'shelves': list(self.shelves),
            'dateAdded': self.date_added,
            'dateFinished': self.date_finished,
            'review': self.review,
            'pageCount': self.page_count,
            'publisher': self.publisher,
            'publishedDate': self.published_date,
            'externalId': self.external_id,
            'originalTitle': self.original_title,
            'originalAuthor': self.original_author,
        }


# Fields an external lookup may fill; title/author/isbn are override-only.
ENRICHABLE_FIELDS = ('cover_url', 'description', 'genre', 'page_count', 'publisher', 'published_date')

_METADATA_KEY_ALIASES = {
    'coverUrl': 'cover_url',
    'cover': 'cover_url',
    'thumbnail': 'cover_url',
    'pageCount': 'page_count',
    'pages': 'page_count',
    'publishedDate': 'published_date',
    'genres': 'genre',
}


@dataclass
class BookMetadata:
    """Partial book metadata supplied by enrichment or a manual override."""
    cover_url: Optional[str] = None
    description: Optional[str] = None
    genre: Optional[str] = None
    page_count: Optional[int] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) in (None, '') for f in dataclass_fields(self))

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclass_fields(self)
                if getattr(self, f.name) not in (None, '')}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BookMetadata':
        """Build from a flat camelCase/snake_case mapping or a Google Books volume."""
        if not isinstance(data, dict):
            raise TypeError("metadata override must be a JSON object")

        if isinstance(data.get('volumeInfo'), dict):
            vi = data['volumeInfo']
            images = vi.get('imageLinks') or {}
            identifiers = {i.get('type'): i.get('identifier') for i in vi.get('industryIdentifiers') or []
                           if isinstance(i, dict)}
            flat = {
                'title': vi.get('title'),
                'author': ', '.join(vi.get('authors') or []) or None,
                'description': vi.get('description'),
                'cover_url': images.get('thumbnail') or images.get('smallThumbnail'),
                'genre': ', '.join(vi.get('categories') or []) or None,
                'publisher': vi.get('publisher'),
                'published_date': vi.get('publishedDate'),
                'page_count': vi.get('pageCount'),
                'isbn': identifiers.get('ISBN_13') or identifiers.get('ISBN_10'),
            }
        else:
            flat = {}
            known = {f.name for f in dataclass_fields(cls)}
            for key, value in data.items():
                name = _METADATA_KEY_ALIASES.get(key, key)
                if name in known:
                    flat[name] = value

        if isinstance(flat.get('genre'), list):
            flat['genre'] = ', '.join(str(g) for g in flat['genre']) or None
        page_count = flat.get('page_count')
        if page_count not in (None, ''):
            try:
                flat['page_count'] = int(page_count)
            except (TypeError, ValueError):
                flat['page_count'] = None
        if flat.get('cover_url'):
            flat['cover_url'] = str(flat['cover_url']).replace('http://', 'https://')
        return cls(**{k: v for k, v in flat.items() if v not in (None, '')})


@dataclass
class ImportOptions:
    """Per-run configuration of an import."""
    preview_only: bool = False
    skip_duplicates: bool = True
    create_collections: bool = False
    enrich_from_external_source: bool = False
    fast_enrichment: bool = False
    manual_overrides: Dict[int, BookMetadata] = field(default_factory=dict)
    selected_row_indices: Optional[Set[int]] = None

    def is_selected(self, row_index: int) -> bool:
        return self.selected_row_indices is None or row_index in self.selected_row_indices


@dataclass
class CollectionRef:
    id: str
    name: str
    created: bool = False


@dataclass
class Collection:
    """User-scoped named grouping of books."""
    user_id: str
    name: str
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    normalized_name: str = ""
    book_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_utc)

    def __post_init__(self):
        if not self.normalized_name and self.name:
            self.normalized_name = self.name.strip().lower()

    def to_ref(self, created: bool = False) -> CollectionRef:
        return CollectionRef(id=self.id, name=self.name, created=created)


@dataclass
class Book:
    """A persisted library record owned by one user."""
    user_id: str
    title: str
    author: str
    id: str = field(default_factory=new_id)
    isbn: Optional[str] = None
    series: Optional[str] = None
    series_number: Optional[int] = None
    reading_status: ReadingStatus = ReadingStatus.WANT_TO_READ
    rating: Optional[int] = None
    genre: Optional[str] = None
    cover_url: Optional[str] = None
    description: Optional[str] = None
    page_count: Optional[int] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    date_added: Optional[str] = None
    date_finished: Optional[str] = None
    review: Optional[str] = None
    external_id: Optional[str] = None
    external_source: Optional[str] = None
    original_shelves: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_utc)

    @property
    def normalized_title(self) -> str:
        return (self.title or '').strip().lower()

    @property
    def normalized_author(self) -> str:
        return (self.author or '').strip().lower()

    @property
    def normalized_isbn(self) -> Optional[str]:
        return self.isbn.strip().upper() if self.isbn else None


@dataclass
class ImportItemResult:
    source_row_index: int
    outcome: ImportOutcome
    book: str = ""  # "Title by Author", used in error reports
    error: Optional[str] = None
    created_collections: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    """Aggregate of a run; total_processed always equals imported + skipped + failed."""
    total_processed: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    collections_created: List[str] = field(default_factory=list)
    cancelled: bool = False

    def record(self, item: ImportItemResult) -> None:
        self.total_processed += 1
        if item.outcome is ImportOutcome.IMPORTED:
            self.imported += 1
        elif item.outcome is ImportOutcome.SKIPPED_DUPLICATE:
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append({'book': item.book, 'error': item.error or 'Unknown error'})
        for name in item.created_collections:
            if name not in self.collections_created:
                self.collections_created.append(name)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'totalProcessed': self.total_processed,
            'imported': self.imported,
            'skipped': self.skipped,
            'failed': self.failed,
            'errors': [dict(e) for e in self.errors],
            'collectionsCreated': list(self.collections_created),
        }
        if self.cancelled:
            data['cancelled'] = True
        return data


@dataclass(frozen=True)
class ImportHistoryEntry:
    """Audit record of one import run. Written once, never updated."""
    user_id: str
    source: str
    file_name: str
    total_rows: int
    success_count: int
    skip_count: int
    error_count: int
    errors: str = "[]"
    imported_at: datetime = field(default_factory=now_utc)
    id: str = field(default_factory=new_id)

    @classmethod
    def from_result(cls, user_id: str, source: str, file_name: str, total_rows: int,
                    result: ImportResult) -> 'ImportHistoryEntry':
        return cls(
            user_id=user_id,
            source=source,
            file_name=file_name,
            total_rows=total_rows,
            success_count=result.imported,
            skip_count=result.skipped,
            error_count=result.failed,
            errors=json.dumps(result.errors),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'source': self.source,
            'fileName': self.file_name,
            'totalRows': self.total_rows,
            'successCount': self.success_count,
            'skipCount': self.skip_count,
            'errorCount': self.error_count,
            'errors': json.loads(self.errors) if self.errors else [],
            'importedAt': self.imported_at.isoformat(),
        }


@dataclass
class ProgressEvent:
    current: int
    total: int
    current_book: str
    type: str = field(default='progress', init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'current': self.current, 'total': self.total,
                'currentBook': self.current_book}


@dataclass
class CompleteEvent:
    result: ImportResult
    type: str = field(default='complete', init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'result': self.result.to_dict()}


@dataclass
class ErrorEvent:
    error: str
    type: str = field(default='error', init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'error': self.error}


def event_to_json_line(event) -> str:
    """Serialize an import event as one NDJSON line."""
    return json.dumps(event.to_dict(), ensure_ascii=False) + "\n"
