"""
API Authentication Module

Resolves `Authorization: Bearer <token>` headers to users through Flask-Login's
request loader. Tokens are configured in API_TOKENS as comma separated
`token:user_id` pairs.
"""

import logging
import secrets
from functools import wraps
from typing import Dict, Optional

from flask import current_app, jsonify, request
from flask_login import UserMixin, current_user

logger = logging.getLogger(__name__)


class ImportUser(UserMixin):
    """Authenticated API caller; the id scopes every library lookup."""

    def __init__(self, user_id: str):
        self.id = user_id

    def __repr__(self):
        return f"<ImportUser {self.id}>"


def parse_api_tokens(value) -> Dict[str, str]:
    """Accept a mapping or a 'token:user,token2:user2' string."""
    if not value:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items() if k and v}

    tokens = {}
    for pair in str(value).split(','):
        token, sep, user_id = pair.strip().partition(':')
        if not sep or not token.strip() or not user_id.strip():
            logger.warning("Ignoring malformed API_TOKENS entry")
            continue
        tokens[token.strip()] = user_id.strip()
    return tokens


def _bearer_token() -> Optional[str]:
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None
    return auth_header[len('Bearer '):].strip() or None


def validate_api_token(token: str) -> Optional[str]:
    """Return the user id owning this token, or None."""
    if not token:
        return None
    matched = None
    # Compare against every configured token so timing does not reveal which one matched
    for candidate, user_id in parse_api_tokens(current_app.config.get('API_TOKENS')).items():
        if secrets.compare_digest(token.encode('utf-8'), candidate.encode('utf-8')):
            matched = user_id
    return matched


def load_user_from_request(req) -> Optional[ImportUser]:
    token = _bearer_token()
    if token is None:
        return None
    user_id = validate_api_token(token)
    if user_id is None:
        logger.info(f"Rejected API token for {req.path}")
        return None
    return ImportUser(user_id)


def api_token_required(f):
    """
    Decorator for API endpoints that require token authentication.
    Distinguishes a bad token from a missing one in the 401 body.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user.is_authenticated:
            return f(*args, **kwargs)
        if _bearer_token() is not None:
            return jsonify({'error': 'Invalid API token'}), 401
        return jsonify({
            'error': 'Authentication required',
            'message': 'Provide an API token via the Authorization header',
        }), 401

    return decorated_function
