"""
Tolerant CSV parsing for reading-library exports (Goodreads and similar).

CsvParser.parse never raises: every problem becomes a RowIssue in the returned
ParseDiagnostics. Rows without a title or author are dropped; rows without a
usable ISBN are kept with a single warning.
"""

import csv
import io
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from ..domain.exceptions import RowParseError
from ..domain.models import CandidateRecord, ParseDiagnostics
from .isbn import clean_excel_value, clean_isbn

logger = logging.getLogger(__name__)

# Logical field -> header aliases (lowercase), in priority order
COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    'title': ('title', 'book title', 'name', 'book name'),
    'author': ('author', 'author(s)', 'authors', 'author name', 'primary author', 'writer', 'author l-f'),
    'isbn': ('isbn13', 'isbn-13', 'isbn', 'isbn10', 'isbn-10', 'isbn/uid'),
    'genre': ('genre', 'genres', 'category', 'categories'),
    'rating': ('my rating', 'rating', 'star rating', 'user rating'),
    'status': ('exclusive shelf', 'read status', 'reading status', 'status'),
    'shelves': ('bookshelves', 'exclusive shelf', 'shelves', 'tags'),
    'date_added': ('date added', 'added date'),
    'date_finished': ('date read', 'date finished', 'finished date'),
    'review': ('my review', 'review'),
    'pages': ('number of pages', 'pages', 'page count'),
    'publisher': ('publisher',),
    'year': ('year published', 'original publication year', 'publication year'),
    'external_id': ('book id',),
}

GOODREADS_INDICATORS = {
    'book id': 2.0,
    'title': 1.0,
    'author': 1.0,
    'author l-f': 2.0,
    'my rating': 2.0,
    'exclusive shelf': 2.0,
    'bookshelves': 1.5,
    'bookshelves with positions': 2.0,
    'private notes': 1.5,
    'read count': 1.5,
    'owned copies': 1.5,
    'original publication year': 1.5,
    'date read': 1.0,
    'date added': 1.0,
    'binding': 1.0,
}

STORYGRAPH_INDICATORS = {
    'title': 1.0,
    'authors': 1.0,
    'star rating': 2.0,
    'read status': 2.0,
    'date started': 2.0,
    'last date read': 2.0,
    'tags': 1.5,
    'moods': 2.0,
    'pace': 2.0,
    'content warnings': 1.5,
    'format': 1.0,
}


def normalize_header(value: str) -> str:
    return re.sub(r'\s+', ' ', (value or '').replace('\ufeff', '').strip().lower())


def detect_csv_format(headers: Sequence[str]) -> Tuple[str, float]:
    """
    Detect if headers come from a Goodreads, StoryGraph, or unknown export.
    Returns tuple of (format_type, confidence_score)
    """
    if not headers:
        return 'unknown', 0.0

    headers_lower = [normalize_header(h) for h in headers]
    goodreads_score = sum(GOODREADS_INDICATORS.get(h, 0.0) for h in headers_lower)
    storygraph_score = sum(STORYGRAPH_INDICATORS.get(h, 0.0) for h in headers_lower)

    # Normalize scores by number of possible indicators
    goodreads_normalized = goodreads_score / sum(GOODREADS_INDICATORS.values())
    storygraph_normalized = storygraph_score / sum(STORYGRAPH_INDICATORS.values())

    min_confidence = 0.3
    if goodreads_normalized >= min_confidence and goodreads_normalized > storygraph_normalized:
        return 'goodreads', goodreads_normalized
    if storygraph_normalized >= min_confidence and storygraph_normalized > goodreads_normalized:
        return 'storygraph', storygraph_normalized
    return 'unknown', max(goodreads_normalized, storygraph_normalized)


def split_shelves(value: str) -> List[str]:
    return [s.strip() for s in re.split(r'[,;]', value or '') if s.strip()]


class _LineFeeder:
    """Line iterator for csv.reader that can be rewound to a physical line."""

    def __init__(self, lines: List[str]):
        self.lines = lines
        self.pos = 0

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self.pos >= len(self.lines):
            raise StopIteration
        line = self.lines[self.pos]
        self.pos += 1
        return line

    @property
    def exhausted(self) -> bool:
        return self.pos >= len(self.lines)


class CsvParser:
    """Turns raw CSV text into CandidateRecords plus ParseDiagnostics."""

    def __init__(self, aliases: Optional[Dict[str, Tuple[str, ...]]] = None):
        self.aliases = aliases or COLUMN_ALIASES

    def map_columns(self, headers: Sequence[str]) -> Dict[str, List[int]]:
        """Column indexes per logical field, in alias priority order.

        Single-valued fields take the first non-empty cell; shelves are unioned.
        """
        normalized = [normalize_header(h) for h in headers]
        mapping: Dict[str, List[int]] = {}
        for field_name, aliases in self.aliases.items():
            indexes = []
            for alias in aliases:
                for i, header in enumerate(normalized):
                    if header == alias and i not in indexes:
                        indexes.append(i)
            if indexes:
                mapping[field_name] = indexes
        return mapping

    def read_headers(self, raw_text: str) -> List[str]:
        """First non-blank record of the file, or [] if it cannot be read."""
        try:
            for row in csv.reader(io.StringIO(raw_text or '', newline='')):
                if any(cell.strip() for cell in row):
                    return [normalize_header(c) for c in row]
        except csv.Error:
            pass
        return []

    def parse(self, raw_text: str) -> Tuple[List[CandidateRecord], ParseDiagnostics]:
        diagnostics = ParseDiagnostics()
        records: List[CandidateRecord] = []

        feeder = _LineFeeder(io.StringIO(raw_text or '', newline='').readlines())
        reader = csv.reader(feeder, strict=True)
        headers: Optional[List[str]] = None
        columns: Dict[str, List[int]] = {}
        row_index = 0

        while True:
            start = feeder.pos
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as exc:
                if headers is None:
                    diagnostics.add_error(-1, f"Could not read CSV header: {exc}")
                    return [], diagnostics
                diagnostics.add_error(row_index, f"Row {row_index + 1}: Malformed CSV row ({exc}) - Skipped")
                logger.warning(f"CSV row {row_index + 1} malformed: {exc}")
                row_index += 1
                # An unterminated quote swallows the rest of the file; resume at the next line
                if feeder.exhausted:
                    feeder.pos = start + 1
                reader = csv.reader(feeder, strict=True)
                continue

            if not any(cell.strip() for cell in row):
                continue

            if headers is None:
                headers = row
                columns = self.map_columns(headers)
                missing = [f for f in ('title', 'author') if f not in columns]
                if missing:
                    diagnostics.add_error(-1, f"Missing required column(s): {', '.join(missing)}")
                    return [], diagnostics
                continue

            if len(row) > len(headers) and not any(cell.strip() for cell in row[len(headers):]):
                row = row[:len(headers)]
            try:
                if len(row) != len(headers):
                    raise RowParseError(
                        row_index,
                        f"Row {row_index + 1}: Malformed CSV row (expected {len(headers)} fields, found {len(row)}) - Skipped")
                records.append(self._build_record(row, columns, row_index, diagnostics))
            except RowParseError as exc:
                diagnostics.add_error(exc.row_index, str(exc))
            row_index += 1

        if headers is None:
            diagnostics.add_error(-1, "CSV file is empty or has no header row")
        return records, diagnostics

    def _build_record(self, row: List[str], columns: Dict[str, List[int]], row_index: int,
                      diagnostics: ParseDiagnostics) -> CandidateRecord:
        def value(field_name: str) -> str:
            for i in columns.get(field_name, []):
                cell = clean_excel_value(row[i])
                if cell:
                    return cell
            return ''

        title = value('title')
        author = value('author')
        missing = [name for name, val in (('title', title), ('author', author)) if not val]
        if missing:
            raise RowParseError(row_index, f"Row {row_index + 1}: Missing required field(s): {', '.join(missing)} - Skipped")

        isbn = None
        for i in columns.get('isbn', []):
            isbn = clean_isbn(row[i])
            if isbn:
                break
        if not isbn:
            diagnostics.add_warning(
                row_index,
                f"Row {row_index + 1}: \"{title}\" by {author} - No ISBN found (data enrichment may be limited)")

        shelves: List[str] = []
        seen = set()
        for i in columns.get('shelves', []):
            for shelf in split_shelves(clean_excel_value(row[i])):
                if shelf.lower() not in seen:
                    seen.add(shelf.lower())
                    shelves.append(shelf)

        return CandidateRecord(
            title=title,
            author=author,
            source_row_index=row_index,
            isbn=isbn,
            genre_raw=value('genre') or None,
            rating_raw=value('rating') or None,
            status_raw=value('status') or None,
            shelves_raw=shelves,
            date_added_raw=value('date_added') or None,
            date_finished_raw=value('date_finished') or None,
            review_raw=value('review') or None,
            page_count_raw=value('pages') or None,
            publisher_raw=value('publisher') or None,
            year_published_raw=value('year') or None,
            external_id=value('external_id') or None,
        )


def parse_csv(raw_text: str) -> Tuple[List[CandidateRecord], ParseDiagnostics]:
    return CsvParser().parse(raw_text)
