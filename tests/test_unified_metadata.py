import requests

from bibliotheca_import.utils import unified_metadata


class DummyResponse:
    def __init__(self, payload, status_code=200, headers=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self.text = ''

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")


class FakeSession:
    def __init__(self, handler):
        self.handler = handler
        self.urls = []

    def get(self, url, timeout=None, headers=None):
        self.urls.append(url)
        return self.handler(url)


def _google_item(isbn_value, title='Fruits Basket, Vol. 2', published='2004'):
    return {
        'id': f'vol-{isbn_value}-{published}',
        'volumeInfo': {
            'title': title,
            'authors': ['Natsuki Takaya'],
            'publishedDate': published,
            'pageCount': 224,
            'categories': ['Comics & Graphic Novels'],
            'imageLinks': {'thumbnail': 'http://books.google.com/cover.jpg'},
            'industryIdentifiers': [{'type': 'ISBN_13', 'identifier': isbn_value}],
        },
    }


def test_fetch_google_by_isbn_drops_mismatched_isbn():
    """Google results with a different ISBN are ignored."""
    session = FakeSession(lambda url: DummyResponse({'items': [_google_item('9781591826071')]}))

    result = unified_metadata._fetch_google_by_isbn('9781591826040', session=session)

    assert result == {}
    assert 'q=isbn:9781591826040' in session.urls[0]


def test_fetch_google_by_isbn_prefers_most_specific_date():
    requested = '9781591826040'
    session = FakeSession(lambda url: DummyResponse({'items': [
        _google_item(requested, published='2004'),
        _google_item(requested, published='2004-03-09'),
    ]}))

    result = unified_metadata._fetch_google_by_isbn(requested, session=session)

    assert result['published_date'] == '2004-03-09'
    assert result['isbn13'] == requested
    assert result['cover_url'] == 'https://books.google.com/cover.jpg'
    assert result['page_count'] == 224


def test_fetch_google_by_query_requires_matching_title():
    session = FakeSession(lambda url: DummyResponse({'items': [_google_item('9781591826040', title='Something Else')]}))

    assert unified_metadata._fetch_google_by_query('intitle:"Fruits Basket"', expected_title='Fruits Basket',
                                                   session=session) == {}


def test_fetch_google_by_query_accepts_subtitle():
    session = FakeSession(lambda url: DummyResponse({'items': [
        _google_item('9781591826040', title='Fruits Basket: Volume Two')]}))

    result = unified_metadata._fetch_google_by_query('Fruits Basket', expected_title='Fruits Basket',
                                                     session=session)

    assert result['title'] == 'Fruits Basket: Volume Two'


def test_fetchers_return_empty_dict_on_network_error():
    def boom(url):
        raise requests.ConnectionError('offline')

    session = FakeSession(boom)

    assert unified_metadata._fetch_google_by_isbn('9781591826040', session=session, max_retries=2) == {}
    assert len(session.urls) == 2
    assert unified_metadata._fetch_openlibrary_by_isbn('9781591826040', session=session, max_retries=1) == {}


def test_fetchers_return_empty_dict_on_bad_json():
    session = FakeSession(lambda url: DummyResponse(ValueError('not json')))

    assert unified_metadata._fetch_google_by_isbn('9781591826040', session=session) == {}


def test_fetch_openlibrary_by_isbn():
    requested = '9781591826040'
    session = FakeSession(lambda url: DummyResponse({
        f'ISBN:{requested}': {
            'title': 'Fruits Basket, Vol. 2',
            'authors': [{'name': 'Natsuki Takaya'}],
            'publishers': [{'name': 'Tokyopop'}],
            'publish_date': 'July 13, 2004',
            'number_of_pages': 232,
            'subjects': [{'name': 'Comics'}, {'name': 'Comics'}, {'name': 'Manga'}],
            'cover': {'medium': 'https://covers.openlibrary.org/b/id/1-M.jpg'},
            'notes': {'value': 'Volume two.'},
        }
    }))

    result = unified_metadata._fetch_openlibrary_by_isbn(requested, session=session)

    assert result['publisher'] == 'Tokyopop'
    assert result['published_date'] == '2004-07-13'
    assert result['categories'] == ['Comics', 'Manga']
    assert result['description'] == 'Volume two.'
    assert result['authors'] == ['Natsuki Takaya']
    assert 'jscmd=data' in session.urls[0]


def test_merge_provider_data_prefers_google_and_fills_gaps():
    google = {'title': 'Dune', 'publisher': None, 'published_date': '1965-01-01', 'published_date_specificity': 1,
              'page_count': 412, 'description': 'Short.', 'categories': ['Fiction'], 'cover_url': 'g.jpg'}
    openlib = {'title': 'Dune (OL)', 'publisher': 'Chilton', 'published_date': '1965-08-01',
               'published_date_specificity': 3, 'page_count': 500, 'description': 'A much longer description.',
               'categories': ['Fiction', 'Science fiction']}

    merged = unified_metadata.merge_provider_data(google, openlib)

    assert merged['title'] == 'Dune'
    assert merged['publisher'] == 'Chilton'
    assert merged['published_date'] == '1965-08-01'
    assert merged['page_count'] == 500
    assert merged['description'] == 'A much longer description.'
    assert merged['categories'] == ['Fiction', 'Science fiction']
    assert merged['cover_url'] == 'g.jpg'


def test_normalize_date():
    assert unified_metadata.normalize_date('2019/12/01') == '2019-12-01'
    assert unified_metadata.normalize_date('2019-12') == '2019-12-01'
    assert unified_metadata.normalize_date('1965') == '1965-01-01'
    assert unified_metadata.normalize_date('3/7/2020') == '2020-03-07'
    assert unified_metadata.normalize_date('October 6, 2015') == '2015-10-06'
    assert unified_metadata.normalize_date('') is None
    assert unified_metadata.normalize_date('someday') is None
