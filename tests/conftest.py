import os

# config.Config refuses to load without a secret key
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

import pytest

from bibliotheca_import.infrastructure.memory_repositories import InMemoryLibraryRepository
from bibliotheca_import.utils import adaptive_http

TEST_TOKEN = 'test-token-alice'
OTHER_TOKEN = 'test-token-bob'


@pytest.fixture(autouse=True)
def fresh_limiters(monkeypatch):
    """Keep rate limiter state and backoff sleeps out of unrelated tests."""
    adaptive_http.reset_limiters()
    monkeypatch.setattr(adaptive_http.time, 'sleep', lambda _seconds: None)
    yield
    adaptive_http.reset_limiters()


@pytest.fixture
def repository():
    return InMemoryLibraryRepository()


class ImportTestConfig:
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    API_TOKENS = f'{TEST_TOKEN}:alice,{OTHER_TOKEN}:bob'
    MAX_IMPORT_FILE_SIZE = 2048
    MAX_CONTENT_LENGTH = 64 * 1024
    IMPORT_HISTORY_LIMIT = 10
    IMPORT_SOURCE_TAG = 'goodreads-csv'
    LOG_LEVEL = 'ERROR'


@pytest.fixture
def app(repository):
    from bibliotheca_import import create_app
    return create_app(ImportTestConfig, repository=repository, enrichment_client=None)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {'Authorization': f'Bearer {TEST_TOKEN}'}
