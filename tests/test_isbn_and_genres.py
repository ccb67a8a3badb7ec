from bibliotheca_import.utils.genre_mapping import normalize_genre, normalize_genres
from bibliotheca_import.utils.isbn import (
    clean_excel_value,
    clean_isbn,
    is_valid_isbn10,
    is_valid_isbn13,
    isbn10_to_isbn13,
    isbn13_to_isbn10,
    isbn_variants,
)


def test_clean_excel_value_strips_text_wrappers():
    assert clean_excel_value('="9780618260300"') == '9780618260300'
    assert clean_excel_value('=""') == ''
    assert clean_excel_value('  plain  ') == 'plain'
    assert clean_excel_value(None) == ''


def test_clean_isbn_accepts_only_isbn_shapes():
    assert clean_isbn('978-0-618-26030-0') == '9780618260300'
    assert clean_isbn('="0-8044-2957-x"') == '080442957X'
    assert clean_isbn('12345') is None
    assert clean_isbn('') is None


def test_checksums():
    assert is_valid_isbn13('9780618260300')
    assert not is_valid_isbn13('9780618260301')
    assert is_valid_isbn10('080442957X')
    assert not is_valid_isbn10('0804429571')


def test_isbn_conversions():
    assert isbn10_to_isbn13('0618260307') == '9780618260300'
    assert isbn13_to_isbn10('9780618260300') == '0618260307'
    # 979 prefixes have no ISBN-10 form
    assert isbn13_to_isbn10('9791032305690') is None


def test_isbn_variants():
    assert isbn_variants('0618260307') == ['0618260307', '9780618260300']
    assert isbn_variants('9780618260300') == ['9780618260300', '0618260307']
    assert isbn_variants(None) == []


def test_normalize_genre():
    assert normalize_genre('Fiction / Fantasy / Epic') == 'Fantasy'
    assert normalize_genre('sci-fi') == 'Science Fiction'
    assert normalize_genre('Detective and mystery stories') == 'Mystery & Thriller'
    assert normalize_genre('Middle Earth (Imaginary place)') is None
    assert normalize_genre('1960s') is None
    assert normalize_genre('gardening') == 'Gardening'
    assert normalize_genre('') is None


def test_known_short_genres_are_not_ignored():
    assert normalize_genre('YA') == 'Young Adult'
    assert normalize_genre('en') is None


def test_normalize_genres_deduplicates_and_limits():
    categories = ['Fantasy', 'Epic fantasy', 'Thrillers', 'Romance', 'Horror']

    assert normalize_genres(categories) == 'Fantasy, Mystery & Thriller, Romance'
    assert normalize_genres([]) is None
