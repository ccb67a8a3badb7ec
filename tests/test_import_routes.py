import io
import json

from bibliotheca_import.utils.safe_import_manager import safe_get_import_job

BOB_HEADERS = {'Authorization': 'Bearer test-token-bob'}

GOODREADS_CSV = (
    'Book Id,Title,Author,ISBN13,My Rating,Exclusive Shelf,Bookshelves\n'
    '1,"Harry Potter and the Chamber of Secrets (Harry Potter, #2)","Rowling, J.K.",="9780439064873",5,read,"fantasy, favorites"\n'
    '2,Dune,Frank Herbert,,4,to-read,sci-fi\n'
    '3,,Jane Doe,,0,read,\n'
)


def upload(client, headers, text=GOODREADS_CSV, filename='goodreads_library_export.csv', **form):
    data = {key: str(value) for key, value in form.items()}
    payload = text.encode('utf-8') if isinstance(text, str) else text
    data['file'] = (io.BytesIO(payload), filename)
    return client.post('/api/import/goodreads', data=data, headers=headers,
                       content_type='multipart/form-data')


def ndjson(response):
    return [json.loads(line) for line in response.get_data(as_text=True).splitlines() if line.strip()]


def test_missing_token_is_rejected(client):
    response = upload(client, {})

    assert response.status_code == 401
    assert response.get_json()['error'] == 'Authentication required'


def test_bad_token_is_rejected(client):
    response = upload(client, {'Authorization': 'Bearer not-a-real-token'})

    assert response.status_code == 401
    assert response.get_json()['error'] == 'Invalid API token'


def test_preview_returns_normalized_rows_and_diagnostics(client, auth_headers, repository):
    response = upload(client, auth_headers, previewOnly='true')

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['totalBooks'] == 2
    assert body['format'] == 'goodreads'
    first = body['books'][0]
    assert first['title'] == 'Harry Potter and the Chamber of Secrets'
    assert first['series'] == 'Harry Potter'
    assert first['seriesNumber'] == 2
    assert first['author'] == 'J.K. Rowling'
    assert first['isbn'] == '9780439064873'
    assert first['readingStatus'] == 'Finished'
    assert any('Missing required field(s): title' in e for e in body['parseErrors'])
    assert any('No ISBN found' in w for w in body['parseWarnings'])
    assert repository.get_books('alice') == []
    assert repository.get_import_history('alice') == []


def test_import_streams_progress_then_complete(client, auth_headers, repository):
    response = upload(client, auth_headers, createCollections='true')

    assert response.status_code == 200
    assert response.mimetype == 'application/x-ndjson'
    task_id = response.headers['X-Import-Task-Id']
    events = ndjson(response)
    assert [e['type'] for e in events] == ['progress', 'progress', 'complete']
    assert [e['current'] for e in events[:2]] == [1, 2]
    assert events[0]['total'] == 2
    result = events[-1]['result']
    assert result['totalProcessed'] == 2
    assert result['imported'] == 2
    assert result['collectionsCreated'] == ['fantasy', 'favorites', 'sci-fi']
    assert 'cancelled' not in result

    assert len(repository.get_books('alice')) == 2
    progress = client.get(f'/api/import/progress/{task_id}', headers=auth_headers).get_json()
    assert progress['status'] == 'completed'
    assert progress['processed'] == 2
    assert progress['total'] == 2


def test_reimport_skips_duplicates(client, auth_headers):
    ndjson(upload(client, auth_headers))

    events = ndjson(upload(client, auth_headers))

    result = events[-1]['result']
    assert result['imported'] == 0
    assert result['skipped'] == 2


def test_selected_indices_limit_the_import(client, auth_headers, repository):
    events = ndjson(upload(client, auth_headers, selectedIndices='[1]'))

    assert events[-1]['result']['imported'] == 1
    assert [b.title for b in repository.get_books('alice')] == ['Dune']


def test_manual_override_is_applied(client, auth_headers, repository):
    overrides = json.dumps({'1': {'description': 'Spice and sand', 'pageCount': 412}})

    ndjson(upload(client, auth_headers, selectedIndices='[1]', manuallySelectedBooks=overrides))

    book = repository.get_books('alice')[0]
    assert book.description == 'Spice and sand'
    assert book.page_count == 412


def test_history_lists_past_imports(client, auth_headers):
    ndjson(upload(client, auth_headers))

    response = client.get('/api/import/goodreads', headers=auth_headers)

    body = response.get_json()
    assert body['success'] is True
    assert len(body['history']) == 1
    entry = body['history'][0]
    assert entry['fileName'] == 'goodreads_library_export.csv'
    assert entry['source'] == 'goodreads-csv'
    assert (entry['totalRows'], entry['successCount'], entry['skipCount'], entry['errorCount']) == (2, 2, 0, 0)
    other = client.get('/api/import/goodreads', headers=BOB_HEADERS)
    assert other.get_json()['history'] == []


def test_non_csv_upload_is_rejected(client, auth_headers):
    response = upload(client, auth_headers, filename='library.xlsx')

    assert response.status_code == 400
    assert response.get_json() == {'success': False, 'error': 'Only CSV files are supported'}


def test_missing_file_is_rejected(client, auth_headers):
    response = client.post('/api/import/goodreads', data={'previewOnly': 'true'}, headers=auth_headers,
                           content_type='multipart/form-data')

    assert response.status_code == 400
    assert response.get_json()['error'] == 'No file provided'


def test_oversized_upload_is_rejected(client, auth_headers, repository):
    big = GOODREADS_CSV + ''.join(f'{i},Filler Book {i},Some Author,,0,to-read,\n' for i in range(10, 200))

    response = upload(client, auth_headers, text=big)

    assert response.status_code == 400
    assert response.get_json()['error'].startswith('File too large')
    assert repository.get_books('alice') == []


def test_non_utf8_upload_is_rejected(client, auth_headers):
    response = upload(client, auth_headers, text='Title,Author\nCaf\xe9,Someone\n'.encode('latin-1'))

    assert response.status_code == 400
    assert response.get_json()['error'] == 'File must be UTF-8 encoded'


def test_malformed_options_are_rejected_before_parsing(client, auth_headers, repository):
    response = upload(client, auth_headers, manuallySelectedBooks='{not json')

    assert response.status_code == 400
    assert response.get_json()['error'] == 'manuallySelectedBooks must be valid JSON'
    bad_indices = upload(client, auth_headers, selectedIndices='{"a": 1}')
    assert bad_indices.status_code == 400
    assert repository.get_books('alice') == []


def test_file_without_valid_rows_returns_parse_errors(client, auth_headers, repository):
    text = 'Title,Author,Publisher\n,Jane Doe,Nobody\n'

    response = upload(client, auth_headers, text=text)

    assert response.status_code == 400
    body = response.get_json()
    assert body['success'] is False
    assert body['error'] == 'No valid books found in CSV'
    assert body['parseErrors'] == ['Row 1: Missing required field(s): title - Skipped']
    assert repository.get_import_history('alice') == []


def test_progress_and_cancel_are_scoped_to_the_caller(client, auth_headers):
    response = upload(client, auth_headers)
    task_id = response.headers['X-Import-Task-Id']
    ndjson(response)

    assert client.get(f'/api/import/progress/{task_id}', headers=BOB_HEADERS).status_code == 404
    assert client.post(f'/api/import/cancel/{task_id}', headers=BOB_HEADERS).status_code == 404
    assert safe_get_import_job('alice', task_id)['status'] == 'completed'


def test_cancel_of_unknown_job_is_404(client, auth_headers):
    response = client.post('/api/import/cancel/does-not-exist', headers=auth_headers)

    assert response.status_code == 404
    assert response.get_json()['error'] == 'Job not found'


def test_cancel_of_finished_job_reports_its_status(client, auth_headers):
    response = upload(client, auth_headers)
    task_id = response.headers['X-Import-Task-Id']
    ndjson(response)

    cancel = client.post(f'/api/import/cancel/{task_id}', headers=auth_headers)

    assert cancel.status_code == 200
    assert cancel.get_json() == {'ok': True, 'status': 'completed'}
