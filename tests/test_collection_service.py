from bibliotheca_import.domain.exceptions import CollectionAlreadyExistsError
from bibliotheca_import.domain.models import Collection, ImportOptions
from bibliotheca_import.services.collection_service import (
    COLLECTION_COLORS,
    DEFAULT_DESCRIPTION,
    DEFAULT_ICON,
    CollectionResolver,
    collection_color,
)

CREATE = ImportOptions(create_collections=True)


def test_disabled_resolution_is_a_no_op(repository):
    resolver = CollectionResolver(repository, 'alice')

    assert resolver.resolve(['fantasy'], ImportOptions(create_collections=False)) == []
    assert repository.get_collections('alice') == []


def test_creates_missing_collections_with_defaults(repository):
    resolver = CollectionResolver(repository, 'alice')

    refs = resolver.resolve(['Fantasy', 'to-read', 'fantasy', 'Book Club'], CREATE)

    assert [r.name for r in refs] == ['Fantasy', 'Book Club']
    assert all(r.created for r in refs)
    collection = repository.find_collection_by_name('alice', 'fantasy')
    assert collection.icon == DEFAULT_ICON
    assert collection.description == DEFAULT_DESCRIPTION
    assert collection.color == collection_color('Fantasy')
    assert resolver.created_names == ['Fantasy', 'Book Club']


def test_existing_collections_are_reused(repository):
    existing = repository.create_collection(Collection(user_id='alice', name='Favorites'))
    resolver = CollectionResolver(repository, 'alice')

    refs = resolver.resolve(['favorites'], CREATE)

    assert refs[0].id == existing.id
    assert refs[0].created is False
    assert resolver.created_names == []


def test_created_names_are_unique_across_rows(repository):
    resolver = CollectionResolver(repository, 'alice')

    first = resolver.resolve(['Sci-Fi'], CREATE)
    second = resolver.resolve(['sci-fi', 'Classics'], CREATE)

    assert first[0].created is True
    assert second[0].id == first[0].id
    assert second[0].created is False
    assert resolver.created_names == ['Sci-Fi', 'Classics']


def test_colour_is_deterministic_and_from_palette():
    assert collection_color('Fantasy') == collection_color('  fantasy ')
    assert collection_color('Horror') in COLLECTION_COLORS


def test_concurrent_create_falls_back_to_existing(repository):
    class RacingRepository:
        """Reports no collection on first lookup, then loses the insert race."""

        def __init__(self, inner):
            self.inner = inner
            self.lookups = 0

        def find_collection_by_name(self, user_id, name):
            self.lookups += 1
            if self.lookups == 1:
                return None
            return self.inner.find_collection_by_name(user_id, name)

        def create_collection(self, collection):
            winner = self.inner.create_collection(Collection(user_id=collection.user_id, name=collection.name))
            raise CollectionAlreadyExistsError(winner.id)

    racing = RacingRepository(repository)
    resolver = CollectionResolver(racing, 'alice')

    refs = resolver.resolve(['Mystery'], CREATE)

    assert refs[0].id == repository.find_collection_by_name('alice', 'mystery').id
    assert refs[0].created is False
    assert resolver.created_names == []
