"""
Flask application factory for the Bibliotheca CSV importer.
"""

import logging
import os

from flask import Flask, jsonify, request
from flask_login import LoginManager

from config import Config

logger = logging.getLogger(__name__)

login_manager = LoginManager()


@login_manager.request_loader
def load_user_from_request(req):
    from .api_auth import load_user_from_request as _load
    return _load(req)


@login_manager.unauthorized_handler
def unauthorized():
    """Custom unauthorized handler that returns JSON for API requests."""
    return jsonify({
        'error': 'Authentication required',
        'message': f'{request.path} requires an API token in the Authorization header',
    }), 401


def create_app(config_object=None, repository=None, enrichment_client=None):
    """
    Build the app.

    repository and enrichment_client default to an in-memory library store and a
    requests-backed metadata client configured from the app config.
    """
    from .infrastructure.memory_repositories import InMemoryLibraryRepository
    from .routes import register_blueprints
    from .services import EnrichmentClient, ImportOrchestrator

    app = Flask(__name__, static_folder=None)
    app.config.from_object(config_object or Config)

    # Configure Python logging level from LOG_LEVEL (default ERROR)
    log_level_name = str(app.config.get('LOG_LEVEL') or os.getenv('LOG_LEVEL', 'ERROR')).upper()
    log_level = getattr(logging, log_level_name, logging.ERROR)
    logging.getLogger().setLevel(log_level)
    app.logger.setLevel(log_level)

    if not app.config.get('SECRET_KEY'):
        raise RuntimeError("SECRET_KEY must be set in environment or config")

    login_manager.init_app(app)

    if enrichment_client is None:
        enrichment_client = EnrichmentClient(
            fast_timeout=app.config.get('ENRICHMENT_FAST_TIMEOUT', 3.0),
            timeout=app.config.get('ENRICHMENT_TIMEOUT', 10.0),
            max_retries=app.config.get('ENRICHMENT_MAX_RETRIES', 3),
        )
    app.extensions['import_orchestrator'] = ImportOrchestrator(
        repository if repository is not None else InMemoryLibraryRepository(),
        enrichment_client=enrichment_client,
        source_tag=app.config.get('IMPORT_SOURCE_TAG', 'goodreads-csv'),
    )

    register_blueprints(app)
    logger.info("Importer application created")
    return app
