import pytest

from bibliotheca_import.domain.exceptions import BookAlreadyExistsError, CollectionAlreadyExistsError
from bibliotheca_import.domain.models import Book, Collection, ImportHistoryEntry, NormalizedCandidate, ReadingStatus
from bibliotheca_import.services.deduplication_service import DeduplicationChecker, books_match


def make_candidate(title='Dune', author='Frank Herbert', isbn=None):
    return NormalizedCandidate(title=title, author=author, reading_status=ReadingStatus.WANT_TO_READ,
                               source_row_index=0, isbn=isbn)


def test_books_match_policy():
    existing = Book(user_id='alice', title='Dune', author='Frank Herbert', isbn='9780441172719')

    assert books_match('9780441172719', 'Other', 'Other', existing)
    assert not books_match('9780441013593', 'Dune', 'Frank Herbert', existing)
    assert books_match(None, 'DUNE', 'frank herbert', existing)
    assert not books_match(None, 'Dune', 'Brian Herbert', existing)


def test_duplicate_by_isbn(repository):
    repository.create_book(Book(user_id='alice', title='Dune', author='Frank Herbert', isbn='9780441172719'))

    assert DeduplicationChecker().is_duplicate(make_candidate(title='Different', isbn='9780441172719'),
                                               repository, 'alice')


def test_duplicate_by_title_and_author_ignores_case(repository):
    repository.create_book(Book(user_id='alice', title='Dune', author='Frank Herbert'))

    assert DeduplicationChecker().is_duplicate(make_candidate(title='dune', author='FRANK HERBERT'),
                                               repository, 'alice')


def test_different_isbns_with_same_title_are_distinct_editions(repository):
    repository.create_book(Book(user_id='alice', title='Dune', author='Frank Herbert', isbn='9780441172719'))

    assert not DeduplicationChecker().is_duplicate(make_candidate(isbn='9780441013593'), repository, 'alice')


def test_duplicates_are_scoped_per_user(repository):
    repository.create_book(Book(user_id='alice', title='Dune', author='Frank Herbert'))

    assert not DeduplicationChecker().is_duplicate(make_candidate(), repository, 'bob')


def test_repository_enforces_uniqueness_at_insert(repository):
    first = repository.create_book(Book(user_id='alice', title='Dune', author='Frank Herbert'))

    with pytest.raises(BookAlreadyExistsError) as exc_info:
        repository.create_book(Book(user_id='alice', title='DUNE', author='Frank Herbert'))
    assert exc_info.value.book_id == first.id

    repository.create_book(Book(user_id='alice', title='Dune', author='Frank Herbert'), enforce_unique=False)
    assert len(repository.get_books('alice')) == 2


def test_repository_collections_are_case_insensitive(repository):
    created = repository.create_collection(Collection(user_id='alice', name='Favorites'))

    assert repository.find_collection_by_name('alice', 'FAVORITES').id == created.id
    assert repository.find_collection_by_name('bob', 'favorites') is None
    with pytest.raises(CollectionAlreadyExistsError):
        repository.create_collection(Collection(user_id='alice', name='favorites'))

    assert repository.add_book_to_collection('alice', 'book-1', created.id) is True
    assert repository.add_book_to_collection('alice', 'book-1', created.id) is False


def test_repository_history_is_newest_first_and_limited(repository):
    for i in range(3):
        repository.create_import_history(ImportHistoryEntry(
            user_id='alice', source='goodreads-csv', file_name=f'export-{i}.csv', total_rows=1,
            success_count=1, skip_count=0, error_count=0))

    history = repository.get_import_history('alice', limit=2)

    assert [e.file_name for e in history] == ['export-2.csv', 'export-1.csv']
    assert repository.get_import_history('bob') == []
