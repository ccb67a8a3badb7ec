"""
CSV import orchestration.

An ImportOrchestrator turns one uploaded file into an ImportSession. Starting a
session parses and normalizes every row synchronously; the session then either
answers a preview or produces a generator of progress events while it imports
rows one by one:

    IDLE -> PARSING -> NORMALIZING -> IMPORTING -> FINALIZING -> COMPLETED | ABORTED

Rows are processed strictly in file order. A failure in one row is recorded in
the result and never stops the run. The import history entry is written once
when the loop ends, including when the consumer stops early (cancel or client
disconnect).
"""

import logging
from typing import Callable, Dict, Iterator, List, Optional, Union

from ..domain.exceptions import BookAlreadyExistsError, HistoryPersistError, RowImportError
from ..domain.models import (
    Book,
    CompleteEvent,
    ErrorEvent,
    ImportHistoryEntry,
    ImportItemResult,
    ImportOptions,
    ImportOutcome,
    ImportResult,
    ImportState,
    NormalizedCandidate,
    ParseDiagnostics,
    ProgressEvent,
)
from ..domain.repositories import LibraryRepository
from ..utils.csv_parser import CsvParser, detect_csv_format
from ..utils.standardization import normalize_candidate
from .collection_service import CollectionResolver
from .deduplication_service import DeduplicationChecker
from .enrichment_service import EnrichmentClient, merge_book_metadata, missing_fields

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TAG = 'goodreads-csv'
NO_VALID_ROWS_MESSAGE = 'No valid books found in CSV'

ImportEvent = Union[ProgressEvent, CompleteEvent, ErrorEvent]

_TRANSITIONS = {
    ImportState.IDLE: {ImportState.PARSING},
    ImportState.PARSING: {ImportState.NORMALIZING, ImportState.ABORTED},
    ImportState.NORMALIZING: {ImportState.IMPORTING, ImportState.ABORTED},
    ImportState.IMPORTING: {ImportState.FINALIZING},
    ImportState.FINALIZING: {ImportState.COMPLETED, ImportState.ABORTED},
    ImportState.COMPLETED: set(),
    ImportState.ABORTED: set(),
}


class ImportSession:
    """One end-to-end execution of the importer over one uploaded file."""

    def __init__(self, orchestrator: 'ImportOrchestrator', user_id: str, file_name: str,
                 options: ImportOptions):
        self.orchestrator = orchestrator
        self.repository = orchestrator.repository
        self.user_id = user_id
        self.file_name = file_name
        self.options = options
        self.state = ImportState.IDLE
        self.diagnostics = ParseDiagnostics()
        self.detected_format = 'unknown'
        self.candidates: List[NormalizedCandidate] = []
        self.result = ImportResult()
        self.collections = CollectionResolver(self.repository, user_id)
        self.history_entry: Optional[ImportHistoryEntry] = None
        self.error: Optional[str] = None
        self._events_started = False

    def _transition(self, new_state: ImportState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal import state transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Import for user {self.user_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def aborted(self) -> bool:
        return self.state is ImportState.ABORTED

    @property
    def total(self) -> int:
        return len(self.candidates)

    def preview(self) -> Dict:
        """Normalized rows and diagnostics; never touches the repository."""
        return {
            'success': not self.aborted,
            'books': [c.to_dict() for c in self.candidates],
            'parseErrors': [e.reason for e in self.diagnostics.errors],
            'parseWarnings': [w.reason for w in self.diagnostics.warnings],
            'totalBooks': len(self.candidates),
            'format': self.detected_format,
        }

    def events(self, cancel_event=None) -> Iterator[ImportEvent]:
        """
        Import the selected rows, yielding a ProgressEvent after every row and one
        final CompleteEvent or ErrorEvent.

        cancel_event (a threading.Event) is checked before each row. Closing the
        generator early stops the loop the same way; history is still written.
        """
        if self.aborted and not self._events_started:
            self._events_started = True
            yield ErrorEvent(self.error or NO_VALID_ROWS_MESSAGE)
            return
        if self._events_started:
            raise RuntimeError("Import session events can only be consumed once")
        self._events_started = True
        self._transition(ImportState.IMPORTING)

        finished = False
        try:
            for position, candidate in enumerate(self.candidates, start=1):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Import for user {self.user_id} cancelled after {position - 1} rows")
                    self.result.cancelled = True
                    break
                self.result.record(self._process_row(candidate))
                yield ProgressEvent(current=position, total=self.total, current_book=candidate.title)
            final_event = self._finalize()
            finished = True
            yield final_event
        finally:
            if not finished and self.state is ImportState.IMPORTING:
                # Consumer went away mid-run; keep the partial run on record.
                logger.info(f"Import stream for user {self.user_id} closed early, saving partial history")
                self.result.cancelled = True
                self._finalize()

    def run(self, cancel_event=None) -> ImportResult:
        """Consume the event stream and return the final result."""
        for _event in self.events(cancel_event):
            pass
        return self.result

    def _process_row(self, candidate: NormalizedCandidate) -> ImportItemResult:
        row = candidate.source_row_index
        override = self.options.manual_overrides.get(row)
        label = candidate.display_name
        if override is not None and (override.title or override.author):
            label = f"{override.title or candidate.title} by {override.author or candidate.author}"

        try:
            if self.options.skip_duplicates and self.orchestrator.dedup.is_duplicate(
                    candidate, self.repository, self.user_id):
                return ImportItemResult(row, ImportOutcome.SKIPPED_DUPLICATE, book=label)

            enrichment = None
            client = self.orchestrator.enrichment_client
            if self.options.enrich_from_external_source and client is not None \
                    and missing_fields(candidate, override):
                enrichment = client.enrich(candidate, fast=self.options.fast_enrichment)

            book = self._build_book(candidate, merge_book_metadata(candidate, override, enrichment))
            try:
                book = self.repository.create_book(book, enforce_unique=self.options.skip_duplicates)
            except BookAlreadyExistsError as exc:
                # A concurrent run inserted it after our pre-check
                logger.info(f"Row {row}: insert rejected as duplicate of {exc.book_id}")
                return ImportItemResult(row, ImportOutcome.SKIPPED_DUPLICATE, book=label)

            created = []
            for ref in self.collections.resolve(candidate.shelves, self.options):
                self.repository.add_book_to_collection(self.user_id, book.id, ref.id)
                if ref.created:
                    created.append(ref.name)
            return ImportItemResult(row, ImportOutcome.IMPORTED, book=label, created_collections=created)

        except Exception as exc:
            error = RowImportError(row, str(exc) or exc.__class__.__name__, cause=exc)
            logger.warning(f"Row {row + 1} ('{candidate.title}') failed: {error}")
            return ImportItemResult(row, ImportOutcome.FAILED, book=label, error=str(error))

    def _build_book(self, candidate: NormalizedCandidate, fields: Dict) -> Book:
        return Book(
            user_id=self.user_id,
            title=fields['title'],
            author=fields['author'],
            isbn=fields['isbn'],
            series=candidate.series,
            series_number=candidate.series_number,
            reading_status=candidate.reading_status,
            rating=candidate.rating,
            genre=fields['genre'],
            cover_url=fields['cover_url'],
            description=fields['description'],
            page_count=fields['page_count'],
            publisher=fields['publisher'],
            published_date=fields['published_date'],
            date_added=candidate.date_added,
            date_finished=candidate.date_finished,
            review=candidate.review,
            external_id=candidate.external_id,
            external_source=self.orchestrator.source_tag,
            original_shelves=list(candidate.shelves),
        )

    def _finalize(self) -> ImportEvent:
        self._transition(ImportState.FINALIZING)
        # Includes collections created by rows that failed afterwards
        self.result.collections_created = list(self.collections.created_names)
        entry = ImportHistoryEntry.from_result(
            user_id=self.user_id,
            source=self.orchestrator.source_tag,
            file_name=self.file_name,
            total_rows=self.total,
            result=self.result,
        )
        try:
            self.history_entry = self.repository.create_import_history(entry)
        except Exception as exc:
            error = HistoryPersistError(f"Import finished but its history could not be saved: {exc}")
            logger.error(f"Failed to save import history for user {self.user_id}: {exc}", exc_info=True)
            self.error = str(error)
            self._transition(ImportState.ABORTED)
            return ErrorEvent(self.error)

        self._transition(ImportState.COMPLETED)
        logger.info(
            f"Import for user {self.user_id} finished: {self.result.imported} imported, "
            f"{self.result.skipped} skipped, {self.result.failed} failed")
        return CompleteEvent(self.result)


class ImportOrchestrator:
    """Builds import sessions over a library repository."""

    def __init__(self, repository: LibraryRepository, parser: Optional[CsvParser] = None,
                 dedup: Optional[DeduplicationChecker] = None,
                 enrichment_client: Optional[EnrichmentClient] = None,
                 normalizer: Callable = normalize_candidate,
                 source_tag: str = DEFAULT_SOURCE_TAG):
        self.repository = repository
        self.parser = parser or CsvParser()
        self.dedup = dedup or DeduplicationChecker()
        self.enrichment_client = enrichment_client
        self.normalizer = normalizer
        self.source_tag = source_tag

    def start(self, user_id: str, file_name: str, raw_text: str,
              options: Optional[ImportOptions] = None) -> ImportSession:
        """Parse and normalize a file. The returned session is ABORTED if no row survived."""
        options = options or ImportOptions()
        session = ImportSession(self, user_id, file_name, options)

        session._transition(ImportState.PARSING)
        records, diagnostics = self.parser.parse(raw_text)
        session.diagnostics = diagnostics
        session.detected_format, _confidence = detect_csv_format(self.parser.read_headers(raw_text))
        if not records:
            session.error = NO_VALID_ROWS_MESSAGE
            session._transition(ImportState.ABORTED)
            logger.info(f"Import of '{file_name}' for user {user_id} aborted: no valid rows")
            return session

        session._transition(ImportState.NORMALIZING)
        normalized = []
        for record in records:
            try:
                normalized.append(self.normalizer(record))
            except Exception as exc:
                logger.warning(f"Row {record.source_row_index + 1} could not be normalized: {exc}")
                diagnostics.add_error(record.source_row_index,
                                      f"Row {record.source_row_index + 1}: Could not normalize row ({exc}) - Skipped")
        session.candidates = [c for c in normalized if options.is_selected(c.source_row_index)]
        logger.info(f"Import of '{file_name}' for user {user_id}: {len(records)} parsed, "
                    f"{len(session.candidates)} selected")
        return session

    def import_csv(self, user_id: str, file_name: str, raw_text: str,
                   options: Optional[ImportOptions] = None) -> ImportSession:
        """Start and run a session to completion."""
        session = self.start(user_id, file_name, raw_text, options)
        if not session.aborted:
            session.run()
        return session
