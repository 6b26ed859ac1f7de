"""
API token authentication for the backup endpoints.
"""

import hmac
from functools import wraps

from flask import current_app, jsonify, request


def token_matches(expected: str, provided: str) -> bool:
    """Compare tokens in constant time."""
    return hmac.compare_digest(expected.encode(), provided.encode())


def require_api_token(view):
    """
    Require ``Authorization: Bearer <BACKUP_API_TOKEN>`` when a token is configured.

    With no token configured the endpoint stays open, which suits deployments
    where the API is only reachable on a private network.
    """
    @wraps(view)
    def wrapped(*args, **kwargs):
        expected = current_app.config.get('BACKUP_API_TOKEN')
        if expected:
            header = request.headers.get('Authorization', '')
            scheme, _, provided = header.partition(' ')
            if scheme.lower() != 'bearer' or not token_matches(expected, provided.strip()):
                return jsonify({'error': 'Unauthorized'}), 401
        return view(*args, **kwargs)

    return wrapped
