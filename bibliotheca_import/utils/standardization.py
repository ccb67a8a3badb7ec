"""
Canonicalization of imported book data.

Pure functions that turn free-form spreadsheet values into the library's canonical
forms:

- standardize_author: "Rowling, J.K." -> "J.K. Rowling", "wm. shakespeare" -> "William Shakespeare"
- standardize_title: Title Case plus series extraction from Goodreads-style suffixes
- standardize_reading_status: any shelf/status vocabulary -> ReadingStatus

normalize_candidate composes them to turn a CandidateRecord into a NormalizedCandidate.
"""

import logging
import re
from typing import Callable, List, NamedTuple, Optional, Tuple

from ..domain.models import CandidateRecord, NormalizedCandidate, ReadingStatus
from .genre_mapping import normalize_genre
from .unified_metadata import normalize_date

logger = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Unknown Author"
UNTITLED = "Untitled"


# ---------------------------------------------------------------------------
# Authors
# ---------------------------------------------------------------------------

# Dotted forms are unambiguous; undotted forms only where they are not real names.
AUTHOR_NAME_EXPANSIONS = {
    'alex.': 'Alexandre',
    'thos.': 'Thomas',
    'thos': 'Thomas',
    'wm.': 'William',
    'wm': 'William',
    'chas.': 'Charles',
    'chas': 'Charles',
    'robt.': 'Robert',
    'robt': 'Robert',
    'geo.': 'George',
    'edw.': 'Edward',
    'edw': 'Edward',
    'fran.': 'Francis',
    'jas.': 'James',
    'jno.': 'John',
    'benj.': 'Benjamin',
    'saml.': 'Samuel',
}

_PARENTHETICAL_RE = re.compile(r'\s*\([^)]*\)\s*')
_SUFFIX_RE = re.compile(r'\s*,?\s*\b(Jr|Sr|II|III|IV)\.?$', re.IGNORECASE)
_ERRANT_RE_RE = re.compile(r'\b(Alex|Thos|Wm|Chas|Robt|Geo|Edw|Fran)\.\s+Re\s+', re.IGNORECASE)
_AUTHOR_CONJUNCTION_RE = re.compile(r'\s+and\s+|\s*&\s*', re.IGNORECASE)
_DOTTED_INITIALS_RE = re.compile(r'^(?:[A-Za-z]\.)+[A-Za-z]?$')
_SINGLE_INITIAL_RE = re.compile(r'^[A-Za-z]\.?$')
# "JK", "JRR"; a three-letter token with a vowel ("JOE") is a name
_BARE_INITIALS_RE = re.compile(r'^(?:[A-Z]{2}|[B-DF-HJ-NP-TV-Z]{3})$')
_ROMAN_RE = re.compile(r'^(?:II|III|IV|VI|VII|VIII)$', re.IGNORECASE)


def _format_suffix(suffix: str) -> str:
    if suffix.lower() in ('jr', 'sr'):
        return suffix.capitalize() + '.'
    return suffix.upper()


def _capitalize_name_word(word: str) -> str:
    """Title-case a name word, keeping deliberate mixed case (McCarthy, DeLillo)."""
    if not (word.islower() or word.isupper()):
        return word[:1].upper() + word[1:]
    parts = []
    for segment in word.lower().split('-'):
        # O'Brien, D'Arcy
        if len(segment) > 2 and segment[1] == "'":
            segment = segment[:2] + segment[2:].capitalize()
        parts.append(segment[:1].upper() + segment[1:])
    return '-'.join(parts)


def _initial_letters(token: str, is_last: bool, allow_bare: bool = True) -> Optional[str]:
    """Letters of an initials token ("J.K.", "J.", "J", "JK"), or None if it is a word."""
    if _SINGLE_INITIAL_RE.match(token) or _DOTTED_INITIALS_RE.match(token):
        return token.replace('.', '').upper()
    if allow_bare and not is_last and _BARE_INITIALS_RE.match(token) and not _ROMAN_RE.match(token):
        return token
    return None


def _standardize_single_name(name: str) -> str:
    """Normalize one author's name that is already in "First Last" order."""
    name = _ERRANT_RE_RE.sub(r'\1. ', name)
    tokens = name.split()
    if not tokens:
        return ''

    if len(tokens) > 1:
        expansion = AUTHOR_NAME_EXPANSIONS.get(tokens[0].lower())
        if expansion:
            tokens[0] = expansion

    # "JO NESBO" is a shouted name, not initials
    allow_bare = not name.isupper()

    words: List[str] = []
    initials = ''
    for i, token in enumerate(tokens):
        letters = _initial_letters(token, i == len(tokens) - 1, allow_bare) if len(tokens) > 1 else None
        if letters:
            initials += letters
            continue
        if initials:
            words.append('.'.join(initials) + '.')
            initials = ''
        if token.isupper() and _ROMAN_RE.match(token):
            words.append(token.upper())
        else:
            words.append(_capitalize_name_word(token))
    if initials:
        words.append('.'.join(initials) + '.')
    return ' '.join(words)


def _looks_like_given_names(text: str) -> bool:
    """True for the part after the comma in "Last, First": "J.K.", "Frank", "Ursula K."."""
    tokens = text.split()
    if not tokens:
        return False
    if len(tokens) == 1:
        return True
    return all(_initial_letters(t, is_last=False) for t in tokens[1:]) or \
        all(_initial_letters(t, is_last=False) for t in tokens)


def _split_group(group: str) -> List[str]:
    """Turn one and/&-free chunk into names in "First Last" order."""
    suffix = None
    match = _SUFFIX_RE.search(group)
    if match and match.start() > 0:
        suffix = _format_suffix(match.group(1))
        group = group[:match.start()].strip()

    parts = [p.strip() for p in group.split(',') if p.strip()]
    if len(parts) == 2 and (len(parts[0].split()) == 1 or _looks_like_given_names(parts[1])):
        names = [f"{parts[1]} {parts[0]}"]
    else:
        names = parts

    if suffix and names:
        names[-1] = f"{names[-1]} {suffix}"
    return names


def standardize_author(raw: Optional[str]) -> str:
    """Canonicalize an author string to "First Last[, First Last...]"."""
    if raw is None or not str(raw).strip():
        return UNKNOWN_AUTHOR

    cleaned = _PARENTHETICAL_RE.sub(' ', str(raw)).strip()
    cleaned = re.sub(r'\s+', ' ', cleaned)

    names: List[str] = []
    for group in _AUTHOR_CONJUNCTION_RE.split(cleaned):
        group = group.strip(' ,')
        if not group:
            continue
        for name in _split_group(group):
            normalized = _standardize_single_name(name)
            if normalized and normalized not in names:
                names.append(normalized)

    return ', '.join(names) if names else UNKNOWN_AUTHOR


# ---------------------------------------------------------------------------
# Titles and series
# ---------------------------------------------------------------------------

SMALL_WORDS = frozenset({
    'a', 'an', 'and', 'as', 'at', 'but', 'by', 'en', 'for', 'if', 'in', 'nor',
    'of', 'on', 'or', 'per', 'the', 'to', 'vs', 'vs.', 'via',
})

WORD_NUMBERS = {
    'one': 1, 'two': 2, 'three': 3, 'four': 4, 'five': 5,
    'six': 6, 'seven': 7, 'eight': 8, 'nine': 9, 'ten': 10,
}


class TitleParts(NamedTuple):
    title: str
    series: Optional[str] = None
    series_number: Optional[int] = None


def _positive_int(text: str) -> Optional[int]:
    text = text.strip().lower()
    if text in WORD_NUMBERS:
        return WORD_NUMBERS[text]
    if text.isdigit() and int(text) > 0:
        return int(text)
    return None


def _numbered_series(match) -> Optional[TitleParts]:
    # "#1.5" or "#1-3" keeps the series but has no usable position
    return TitleParts(match.group(1).strip(), match.group(2).strip(), _positive_int(match.group(3)))


def _parenthetical_series(match) -> Optional[TitleParts]:
    inner = match.group(2).strip()
    if re.fullmatch(r'\d{4}', inner) or len(inner) <= 3:
        return None
    return TitleParts(match.group(1).strip(), inner, None)


def _book_number(match) -> Optional[TitleParts]:
    return TitleParts(match.group(1).strip(), None, _positive_int(match.group(2)))


# Evaluated in order; the first extractor returning a result wins.
SERIES_PATTERNS: List[Tuple[str, re.Pattern, Callable]] = [
    ('numbered_series',
     re.compile(r'^(.+?)\s*\(([^()]+?)(?:,\s*#|\s+#)\s*([0-9][0-9.\-–]*)\)$'),
     _numbered_series),
    ('parenthetical_series',
     re.compile(r'^(.+?)\s*\(([^()]+)\)$'),
     _parenthetical_series),
    ('book_number',
     re.compile(r'^(.+?)\s*[,:]\s*(?:Book|Vol\.?|Volume)\s+(\d+|' + '|'.join(WORD_NUMBERS) + r')\s*$',
                re.IGNORECASE),
     _book_number),
]


def extract_series_info(raw: str) -> TitleParts:
    """Split series information off a title without changing its case."""
    text = (raw or '').strip()
    for _name, pattern, extractor in SERIES_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        parts = extractor(match)
        if parts is not None:
            return parts
    return TitleParts(text)


def _is_acronym(word: str) -> bool:
    letters = re.sub(r'[^A-Za-z]', '', word)
    return len(letters) >= 2 and len(word) <= 4 and word.isupper()


def _capitalize_title_word(word: str) -> str:
    letters = [c for c in word if c.isalpha()]
    mixed = any(c.isupper() for c in letters[1:]) and any(c.islower() for c in letters)
    for i, ch in enumerate(word):
        if ch.isalpha():
            rest = word[i + 1:] if mixed else word[i + 1:].lower()
            return word[:i] + ch.upper() + rest
    return word


def to_title_case(text: str) -> str:
    """Title Case with small-word rules; short all-caps tokens are kept as acronyms."""
    words = text.split()
    if not words:
        return ''
    shouting = len(words) > 1 and text.isupper()
    result = []
    for i, word in enumerate(words):
        first = i == 0 or result[-1].endswith(':')
        last = i == len(words) - 1
        if not shouting and _is_acronym(word):
            result.append(word)
        elif not first and not last and word.lower().strip('(),;') in SMALL_WORDS:
            result.append(word.lower())
        else:
            result.append(_capitalize_title_word(word))
    return ' '.join(result)


def standardize_title(raw: Optional[str]) -> TitleParts:
    """Extract series info and Title-Case the remaining title."""
    if raw is None or not str(raw).strip():
        return TitleParts(UNTITLED)
    parts = extract_series_info(str(raw))
    title = to_title_case(re.sub(r'\s+', ' ', parts.title).strip()) or UNTITLED
    series = re.sub(r'\s+', ' ', parts.series).strip() if parts.series else None
    return TitleParts(title, series or None, parts.series_number)


# ---------------------------------------------------------------------------
# Reading status
# ---------------------------------------------------------------------------

_WANT = ReadingStatus.WANT_TO_READ
_READING = ReadingStatus.CURRENTLY_READING
_FINISHED = ReadingStatus.FINISHED

STATUS_SYNONYMS = {
    # Want to Read
    'want to read': _WANT,
    'to read': _WANT,
    'to be read': _WANT,
    'tbr': _WANT,
    'wishlist': _WANT,
    'wish list': _WANT,
    'want': _WANT,
    'wanted': _WANT,
    'planned': _WANT,
    'plan to read': _WANT,
    'planning to read': _WANT,
    'not started': _WANT,
    'not yet read': _WANT,
    'unread': _WANT,
    'queue': _WANT,
    'queued': _WANT,
    'up next': _WANT,
    'on deck': _WANT,
    'backlog': _WANT,
    'someday': _WANT,
    'owned but not read': _WANT,
    # Currently Reading
    'currently reading': _READING,
    'reading': _READING,
    'now reading': _READING,
    'in progress': _READING,
    'started': _READING,
    'current': _READING,
    'currently listening': _READING,
    'listening': _READING,
    'rereading': _READING,
    're reading': _READING,
    'paused': _READING,
    'on hold': _READING,
    # Finished
    'finished': _FINISHED,
    'read': _FINISHED,
    'completed': _FINISHED,
    'complete': _FINISHED,
    'done': _FINISHED,
    'finished reading': _FINISHED,
    'have read': _FINISHED,
    'has read': _FINISHED,
    'already read': _FINISHED,
    'read it': _FINISHED,
    'did not finish': _FINISHED,
    'dnf': _FINISHED,
    'abandoned': _FINISHED,
}


def _status_key(raw: str) -> str:
    return re.sub(r'[\s_\-]+', ' ', raw.strip().lower()).strip()


def lookup_reading_status(raw) -> Optional[ReadingStatus]:
    """The ReadingStatus a value names, or None when it would have to be guessed."""
    if isinstance(raw, ReadingStatus):
        return raw
    key = _status_key(str(raw)) if raw is not None else ''
    if not key:
        return None
    for status in ReadingStatus:
        if key == status.value.lower():
            return status
    return STATUS_SYNONYMS.get(key)


def standardize_reading_status(raw) -> ReadingStatus:
    """Map any status vocabulary to a ReadingStatus; unknown values fall back to Want to Read."""
    status = lookup_reading_status(raw)
    if status is not None:
        return status
    logger.warning(f"Unknown reading status {raw!r}, defaulting to '{_WANT.value}'")
    return _WANT


# ---------------------------------------------------------------------------
# Candidate records
# ---------------------------------------------------------------------------

def _parse_rating(raw: Optional[str]) -> Optional[int]:
    # Goodreads writes 0 for "not rated"
    if not raw:
        return None
    try:
        value = int(round(float(raw)))
    except (TypeError, ValueError):
        return None
    if value <= 0:
        return None
    return min(value, 5)


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    digits = re.sub(r'[^0-9]', '', raw)
    return int(digits) if digits and int(digits) > 0 else None


def standardize_csv_genre(raw: Optional[str]) -> Optional[str]:
    """Map each genre in a spreadsheet cell; values without a standard genre are kept as written."""
    genres: List[str] = []
    for part in re.split(r'[,;]', raw or ''):
        part = part.strip()
        if not part:
            continue
        genre = normalize_genre(part) or part
        if genre not in genres:
            genres.append(genre)
    return ', '.join(genres) or None


def normalize_candidate(record: CandidateRecord) -> NormalizedCandidate:
    """Standardize a parsed row into a NormalizedCandidate."""
    title_parts = standardize_title(record.title)
    status_source = record.status_raw
    if not status_source and record.date_finished_raw:
        status_source = 'read'
    year = (record.year_published_raw or '').strip()

    return NormalizedCandidate(
        title=title_parts.title,
        series=title_parts.series,
        series_number=title_parts.series_number,
        author=standardize_author(record.author),
        reading_status=standardize_reading_status(status_source),
        status_guessed=lookup_reading_status(status_source) is None,
        source_row_index=record.source_row_index,
        isbn=record.isbn,
        genre=standardize_csv_genre(record.genre_raw),
        rating=_parse_rating(record.rating_raw),
        shelves=list(record.shelves_raw),
        date_added=normalize_date(record.date_added_raw),
        date_finished=normalize_date(record.date_finished_raw),
        review=(record.review_raw or '').strip() or None,
        page_count=_parse_int(record.page_count_raw),
        publisher=(record.publisher_raw or '').strip() or None,
        published_date=year if re.fullmatch(r'\d{4}', year) else None,
        external_id=record.external_id,
        original_title=record.title,
        original_author=record.author,
    )
