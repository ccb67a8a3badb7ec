"""Materialize spreadsheet shelves as user collections."""

import hashlib
import logging
from typing import Dict, List, Optional

from ..domain.exceptions import CollectionAlreadyExistsError
from ..domain.models import Collection, CollectionRef, ImportOptions
from ..domain.repositories import CollectionRepository

logger = logging.getLogger(__name__)

DEFAULT_ICON = '📚'
DEFAULT_DESCRIPTION = 'Imported from Goodreads'
COLLECTION_COLORS = [
    '#8b6f47', '#c89b65', '#a0826d', '#6b5d4f', '#9d8b7a',
    '#7a6551', '#b89968', '#8d7456', '#a68b5b', '#715c3e',
]

# Reading-status shelves are represented by the book's status, not a collection
STATUS_SHELVES = frozenset({'read', 'currently-reading', 'to-read', 'currently reading', 'to read'})


def collection_color(name: str) -> str:
    """Same name, same colour, across runs and processes."""
    digest = hashlib.sha1(name.strip().lower().encode('utf-8')).hexdigest()
    return COLLECTION_COLORS[int(digest, 16) % len(COLLECTION_COLORS)]


class CollectionResolver:
    """
    Resolves shelf names to collections for one import run.

    Names created during the run accumulate in created_names, de-duplicated and in
    first-seen order across all rows.
    """

    def __init__(self, repository: CollectionRepository, user_id: str,
                 description: str = DEFAULT_DESCRIPTION):
        self.repository = repository
        self.user_id = user_id
        self.description = description
        self.created_names: List[str] = []
        self._cache: Dict[str, Collection] = {}

    def resolve(self, shelves: List[str], options: ImportOptions) -> List[CollectionRef]:
        if not options.create_collections:
            return []

        refs: List[CollectionRef] = []
        seen = set()
        for shelf in shelves or []:
            name = (shelf or '').strip()
            key = name.lower()
            if not name or key in STATUS_SHELVES or key in seen:
                continue
            seen.add(key)
            refs.append(self._get_or_create(name))
        return refs

    def _get_or_create(self, name: str) -> CollectionRef:
        key = name.lower()
        cached = self._cache.get(key)
        if cached is not None:
            return cached.to_ref()

        existing = self.repository.find_collection_by_name(self.user_id, name)
        if existing is not None:
            self._cache[key] = existing
            return existing.to_ref()

        collection = Collection(
            user_id=self.user_id,
            name=name,
            description=self.description,
            icon=DEFAULT_ICON,
            color=collection_color(name),
        )
        try:
            created = self.repository.create_collection(collection)
        except CollectionAlreadyExistsError:
            # Another run created it between the lookup and the insert
            existing = self._refetch(name)
            self._cache[key] = existing
            return existing.to_ref()

        self._cache[key] = created
        if created.name not in self.created_names:
            self.created_names.append(created.name)
        logger.info(f"Created collection '{created.name}' for user {self.user_id}")
        return created.to_ref(created=True)

    def _refetch(self, name: str) -> Collection:
        existing: Optional[Collection] = self.repository.find_collection_by_name(self.user_id, name)
        if existing is None:
            raise LookupError(f"Collection '{name}' reported as existing but not found")
        return existing
