"""
Unified metadata lookups for books.

Google Books and OpenLibrary fetchers used by import enrichment, with date
normalization and field merging. Every fetcher takes an optional requests
session and returns an empty dict on any failure; callers treat {} as "no data".
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus
import re
import os
import logging

import requests

from .adaptive_http import adaptive_get

_META_LOG = logging.getLogger(__name__)
_META_DEBUG = os.getenv('METADATA_DEBUG', '0').lower() in ('1', 'true', 'yes', 'on')

USER_AGENT = 'BibliothecaImport/metadata-fetch (+https://example.local)'
GOOGLE_BOOKS_URL = 'https://www.googleapis.com/books/v1/volumes'
OPENLIBRARY_BOOKS_URL = 'https://openlibrary.org/api/books'

_MONTHS = {
	'january': 1, 'february': 2, 'march': 3, 'april': 4, 'may': 5, 'june': 6,
	'july': 7, 'august': 8, 'september': 9, 'october': 10, 'november': 11, 'december': 12
}


def normalize_date(val: Optional[str]) -> Optional[str]:
	"""Normalize a date string to ISO (YYYY-MM-DD).

	Handles common formats:
	- YYYY
	- YYYY-MM (pads to first day of month)
	- YYYY-MM-DD and YYYY/MM/DD (Goodreads exports)
	- MM/DD/YYYY or M/D/YYYY
	- Month D, YYYY (e.g., October 6, 2015)
	Returns None if input is falsy or unparseable.
	"""
	if not val:
		return None

	s = str(val).strip()
	if not s:
		return None

	m = re.fullmatch(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})", s)
	if m:
		return f"{int(m.group(1)):04d}-{int(m.group(2)):02d}-{int(m.group(3)):02d}"

	# YYYY or YYYY-MM
	m = re.fullmatch(r"(\d{4})(?:[-/](\d{1,2}))?", s)
	if m:
		year = int(m.group(1))
		month = int(m.group(2)) if m.group(2) else 1
		return f"{year:04d}-{month:02d}-01"

	# MM/DD/YYYY or M/D/YYYY
	m = re.fullmatch(r"(\d{1,2})/(\d{1,2})/(\d{4})", s)
	if m:
		return f"{int(m.group(3)):04d}-{int(m.group(1)):02d}-{int(m.group(2)):02d}"

	# Month D, YYYY
	m = re.fullmatch(r"([A-Za-z]+)\s+(\d{1,2}),\s*(\d{4})", s)
	if m and m.group(1).lower() in _MONTHS:
		return f"{int(m.group(3)):04d}-{_MONTHS[m.group(1).lower()]:02d}-{int(m.group(2)):02d}"

	# Fallback: if there's a year, return first day of that year
	m = re.search(r"(\d{4})", s)
	if m:
		return f"{int(m.group(1)):04d}-01-01"

	return None


def _date_specificity(date_str: Optional[str]) -> int:
	"""Rough specificity score: 3 full date, 2 year-month, 1 year, 0 unknown."""
	if not date_str:
		return 0
	s = str(date_str).strip()
	if re.fullmatch(r"\d{4}[-/]\d{1,2}[-/]\d{1,2}", s) or re.fullmatch(r"\d{1,2}/\d{1,2}/\d{4}", s) \
			or re.fullmatch(r"[A-Za-z]+\s+\d{1,2},\s*\d{4}", s):
		return 3
	if re.fullmatch(r"\d{4}[-/]\d{1,2}", s):
		return 2
	if re.search(r"\d{4}", s):
		return 1
	return 0


def _digits(value: Any) -> str:
	return re.sub(r"[^0-9Xx]", "", str(value or '')).upper()


def _google_identifiers(item: Dict[str, Any]):
	vi = item.get('volumeInfo') or {}
	isbn10 = None
	isbn13 = None
	for ident in vi.get('industryIdentifiers') or []:
		t = ident.get('type')
		val = _digits(ident.get('identifier'))
		if t == 'ISBN_10' and val:
			isbn10 = val
		elif t == 'ISBN_13' and val:
			isbn13 = val
	return isbn10, isbn13


def _google_item_to_dict(item: Dict[str, Any]) -> Dict[str, Any]:
	vi = item.get('volumeInfo') or {}
	isbn10, isbn13 = _google_identifiers(item)

	cover_url = None
	image_links = vi.get('imageLinks') or {}
	for size in ['extraLarge', 'large', 'medium', 'small', 'thumbnail', 'smallThumbnail']:
		if image_links.get(size):
			cover_url = image_links[size].replace('http://', 'https://')
			break

	description = vi.get('description') or (item.get('searchInfo') or {}).get('textSnippet')
	raw_date = vi.get('publishedDate')
	return {
		'title': vi.get('title') or '',
		'subtitle': vi.get('subtitle') or None,
		'authors': vi.get('authors') or [],
		'publisher': vi.get('publisher') or None,
		'published_date': normalize_date(raw_date),
		'published_date_specificity': _date_specificity(raw_date),
		'page_count': vi.get('printedPageCount') or vi.get('pageCount'),
		'description': description,
		'categories': [c for c in (vi.get('categories') or []) if isinstance(c, str)],
		'cover_url': cover_url,
		'isbn10': isbn10,
		'isbn13': isbn13,
		'google_books_id': item.get('id'),
	}


def _google_items(url: str, session=None, timeout: float = 15, max_retries: Optional[int] = None) -> List[Dict[str, Any]]:
	resp = adaptive_get('google_books', url, session=session, timeout=timeout, max_retries=max_retries,
						headers={'User-Agent': USER_AGENT})
	resp.raise_for_status()
	data = resp.json() or {}
	return [it for it in (data.get('items') or []) if isinstance(it, dict)]


def _fetch_google_by_isbn(isbn: str, session=None, timeout: float = 15, max_retries: Optional[int] = None) -> Dict[str, Any]:
	"""Fetch Google Books metadata for an ISBN.

	Items whose ISBNs are listed but differ from the requested one are ignored
	(Google's isbn: search is fuzzy). Among the rest, the most specific
	publishedDate wins.
	"""
	url = f"{GOOGLE_BOOKS_URL}?q=isbn:{quote_plus(str(isbn))}"
	try:
		items = _google_items(url, session=session, timeout=timeout, max_retries=max_retries)
		target = _digits(isbn)
		candidates = []
		for it in items:
			i10, i13 = _google_identifiers(it)
			if (i10 or i13) and target not in (i10, i13):
				continue
			candidates.append(it)
		if not candidates:
			if _META_DEBUG:
				_META_LOG.warning(f"[UNIFIED_METADATA][GOOGLE][EMPTY] isbn={isbn} items={len(items)} url={url}")
			return {}
		item = max(candidates, key=lambda it: _date_specificity((it.get('volumeInfo') or {}).get('publishedDate')))
		return _google_item_to_dict(item)
	except (requests.exceptions.RequestException, ValueError) as e:
		if _META_DEBUG:
			_META_LOG.warning(f"[UNIFIED_METADATA][GOOGLE][EXC] isbn={isbn} err={e}")
		return {}


def _title_key(value: Optional[str]) -> str:
	return re.sub(r"[^a-z0-9]+", " ", (value or '').lower()).strip()


def _fetch_google_by_query(query: str, expected_title: Optional[str] = None, session=None,
						   timeout: float = 15, max_retries: Optional[int] = None,
						   max_results: int = 5) -> Dict[str, Any]:
	"""Fetch the best Google Books volume for a free-text query.

	When expected_title is given, an item whose title matches it (ignoring case and
	punctuation, allowing a subtitle) is required.
	"""
	url = f"{GOOGLE_BOOKS_URL}?q={quote_plus(query)}&maxResults={int(max_results)}"
	try:
		items = _google_items(url, session=session, timeout=timeout, max_retries=max_retries)
		if expected_title:
			want = _title_key(expected_title)
			matched = []
			for it in items:
				got = _title_key((it.get('volumeInfo') or {}).get('title'))
				if got and (got.startswith(want) or want.startswith(got)):
					matched.append(it)
			items = matched
		if not items:
			if _META_DEBUG:
				_META_LOG.warning(f"[UNIFIED_METADATA][GOOGLE][NO_MATCH] q={query}")
			return {}
		return _google_item_to_dict(items[0])
	except (requests.exceptions.RequestException, ValueError) as e:
		if _META_DEBUG:
			_META_LOG.warning(f"[UNIFIED_METADATA][GOOGLE][EXC] q={query} err={e}")
		return {}


def _fetch_openlibrary_by_isbn(isbn: str, session=None, timeout: float = 15, max_retries: Optional[int] = None) -> Dict[str, Any]:
	"""Fetch OpenLibrary metadata for an ISBN using the lightweight data API."""
	bibkey = f"ISBN:{isbn}"
	url = f"{OPENLIBRARY_BOOKS_URL}?bibkeys={bibkey}&format=json&jscmd=data"
	try:
		resp = adaptive_get('openlibrary', url, session=session, timeout=timeout, max_retries=max_retries,
							headers={'User-Agent': USER_AGENT})
		resp.raise_for_status()
		data = resp.json() or {}
		ol = data.get(bibkey) or {}
		if not ol:
			return {}

		authors = [a.get('name') for a in (ol.get('authors') or []) if isinstance(a, dict)]
		publishers = [p.get('name') if isinstance(p, dict) else str(p) for p in (ol.get('publishers') or [])]
		raw_date = ol.get('publish_date')
		cover = ol.get('cover') or {}
		# Description may be a string or object with 'value'
		desc = ol.get('description') or ol.get('notes')
		if isinstance(desc, dict):
			desc = desc.get('value')
		subjects = []
		for s in ol.get('subjects') or []:
			name = s.get('name') if isinstance(s, dict) else (str(s) if s is not None else None)
			if name and name not in subjects:
				subjects.append(name)
		return {
			'title': ol.get('title'),
			'subtitle': ol.get('subtitle'),
			'authors': authors,
			'publisher': publishers[0] if publishers else None,
			'published_date': normalize_date(raw_date),
			'published_date_specificity': _date_specificity(raw_date),
			'page_count': ol.get('number_of_pages'),
			'description': desc,
			'categories': subjects,
			'cover_url': cover.get('large') or cover.get('medium') or cover.get('small'),
			'openlibrary_id': ol.get('key'),
		}
	except (requests.exceptions.RequestException, ValueError) as e:
		if _META_DEBUG:
			_META_LOG.warning(f"[UNIFIED_METADATA][OPENLIB][EXC] isbn={isbn} err={e}")
		return {}


def _choose_longer_text(a: Optional[str], b: Optional[str]) -> Optional[str]:
	if a and b:
		return a if len(a) >= len(b) else b
	return a or b or None


def merge_provider_data(google: Dict[str, Any], openlib: Dict[str, Any]) -> Dict[str, Any]:
	"""Merge Google Books and OpenLibrary dicts; Google wins ties."""
	google = google or {}
	openlib = openlib or {}
	merged: Dict[str, Any] = {}

	for key in ['title', 'subtitle', 'publisher', 'cover_url']:
		merged[key] = google.get(key) or openlib.get(key)

	g_date = google.get('published_date')
	o_date = openlib.get('published_date')
	if g_date and o_date and openlib.get('published_date_specificity', 0) > google.get('published_date_specificity', 0):
		merged['published_date'] = o_date
	else:
		merged['published_date'] = g_date or o_date

	pages = [p for p in (google.get('page_count'), openlib.get('page_count')) if p]
	merged['page_count'] = max(pages) if pages else None

	merged['description'] = _choose_longer_text(google.get('description'), openlib.get('description'))

	# Categories: Google first, then OpenLibrary subjects
	categories: List[str] = []
	for c in (google.get('categories') or []) + (openlib.get('categories') or []):
		if c not in categories:
			categories.append(c)
	merged['categories'] = categories
	merged['authors'] = google.get('authors') or openlib.get('authors') or []
	return merged
