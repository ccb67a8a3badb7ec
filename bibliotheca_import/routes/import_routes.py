"""
Import routes.
Handles Goodreads-style CSV uploads: preview, streamed import with progress,
import history, and progress/cancel endpoints for running jobs.
"""

import json
import logging
import uuid
from typing import Any, Dict, Optional, Set

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context
from flask_login import current_user
from werkzeug.exceptions import RequestEntityTooLarge

from ..api_auth import api_token_required
from ..domain.exceptions import NoValidRowsError, ValidationError
from ..domain.models import BookMetadata, ImportOptions, ImportState, ProgressEvent, event_to_json_line
from ..utils.safe_import_manager import (
    safe_cancel_import_job,
    safe_create_import_job,
    safe_get_import_job,
    safe_import_manager,
    safe_update_import_job,
)

logger = logging.getLogger(__name__)

import_bp = Blueprint('import', __name__)

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _orchestrator():
    return current_app.extensions['import_orchestrator']


def _form_bool(name: str, default: bool = False, *aliases: str) -> bool:
    for key in (name,) + aliases:
        raw = request.form.get(key)
        if raw is not None and raw.strip() != '':
            return raw.strip().lower() in _TRUE_VALUES
    return default


def _form_json(name: str) -> Any:
    raw = request.form.get(name)
    if raw is None or raw.strip() == '':
        return None
    try:
        return json.loads(raw)
    except ValueError:
        raise ValidationError(f"{name} must be valid JSON")


def _selected_indices() -> Optional[Set[int]]:
    value = _form_json('selectedIndices')
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in value):
        raise ValidationError("selectedIndices must be an array of row indices")
    return set(value)


def _manual_overrides() -> Dict[int, BookMetadata]:
    value = _form_json('manuallySelectedBooks')
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("manuallySelectedBooks must be an object keyed by row index")

    overrides = {}
    for key, metadata in value.items():
        try:
            row_index = int(key)
            overrides[row_index] = BookMetadata.from_dict(metadata)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid manual selection for row {key}: {e}")
    return overrides


def parse_import_options() -> ImportOptions:
    return ImportOptions(
        preview_only=_form_bool('previewOnly'),
        skip_duplicates=_form_bool('skipDuplicates', True),
        create_collections=_form_bool('createCollections'),
        enrich_from_external_source=_form_bool('enrichFromExternalSource', False, 'enrichFromGoogle'),
        fast_enrichment=_form_bool('fastMode'),
        manual_overrides=_manual_overrides(),
        selected_row_indices=_selected_indices(),
    )


def read_upload():
    """Validate the uploaded file and return (file_name, text)."""
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise ValidationError("No file provided")
    if not upload.filename.lower().endswith('.csv'):
        raise ValidationError("Only CSV files are supported")

    max_size = current_app.config.get('MAX_IMPORT_FILE_SIZE', 10 * 1024 * 1024)
    data = upload.read(max_size + 1)
    if len(data) > max_size:
        raise ValidationError(f"File too large (maximum {max_size // (1024 * 1024)} MB)")
    try:
        text = data.decode('utf-8-sig')
    except UnicodeDecodeError:
        raise ValidationError("File must be UTF-8 encoded")
    return upload.filename, text


@import_bp.errorhandler(ValidationError)
def handle_validation_error(e):
    body = {'success': False, 'error': str(e)}
    if isinstance(e, NoValidRowsError) and e.diagnostics is not None:
        body['parseErrors'] = [issue.reason for issue in e.diagnostics.errors]
        body['parseWarnings'] = [issue.reason for issue in e.diagnostics.warnings]
    return jsonify(body), 400


@import_bp.errorhandler(RequestEntityTooLarge)
def handle_too_large(e):
    return jsonify({'success': False, 'error': 'File too large'}), 400


@import_bp.route('/api/import/goodreads', methods=['POST'])
@api_token_required
def import_goodreads():
    """Preview or run an import of an uploaded CSV."""
    # Options are validated before the upload is read or parsed
    options = parse_import_options()
    file_name, text = read_upload()
    user_id = current_user.id

    session = _orchestrator().start(user_id, file_name, text, options)
    if session.aborted:
        raise NoValidRowsError(session.error, diagnostics=session.diagnostics)

    if options.preview_only:
        return jsonify(session.preview())

    safe_import_manager.cleanup_finished_jobs(user_id)
    task_id = str(uuid.uuid4())
    cancel_event = safe_create_import_job(user_id, task_id, {
        'status': 'running',
        'file_name': file_name,
        'processed': 0,
        'total': session.total,
    })

    def generate():
        events = session.events(cancel_event)
        try:
            for event in events:
                if isinstance(event, ProgressEvent):
                    safe_update_import_job(user_id, task_id, {
                        'processed': event.current,
                        'current_book': event.current_book,
                    })
                yield event_to_json_line(event)
        finally:
            events.close()
            if session.state is ImportState.COMPLETED:
                status = 'cancelled' if session.result.cancelled else 'completed'
            else:
                status = 'failed'
            safe_update_import_job(user_id, task_id, {
                'status': status,
                'result': session.result.to_dict(),
                'error': session.error,
            })

    response = Response(stream_with_context(generate()), mimetype='application/x-ndjson')
    response.headers['X-Import-Task-Id'] = task_id
    response.headers['Cache-Control'] = 'no-cache'
    return response


@import_bp.route('/api/import/goodreads', methods=['GET'])
@api_token_required
def import_history():
    limit = current_app.config.get('IMPORT_HISTORY_LIMIT', 10)
    entries = _orchestrator().repository.get_import_history(current_user.id, limit=limit)
    return jsonify({'success': True, 'history': [e.to_dict() for e in entries]})


@import_bp.route('/api/import/progress/<task_id>')
@api_token_required
def api_import_progress(task_id):
    """Snapshot of a job, scoped to the calling user."""
    job = safe_get_import_job(current_user.id, task_id)
    if not job:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify(job)


@import_bp.route('/api/import/cancel/<task_id>', methods=['POST'])
@api_token_required
def api_import_cancel(task_id):
    """Request cancellation of a running import.

    The run stops before its next row, saves history for the rows already
    processed, and its stream ends with a complete event flagged as cancelled.
    """
    job = safe_get_import_job(current_user.id, task_id)
    if not job:
        return jsonify({'error': 'Job not found'}), 404
    if not safe_cancel_import_job(current_user.id, task_id):
        # Already finished; nothing to cancel
        return jsonify({'ok': True, 'status': job.get('status')})
    return jsonify({'ok': True, 'status': 'cancelling'})
