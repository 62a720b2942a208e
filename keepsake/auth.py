"""
API token authentication through Flask-Login's request loader.
"""

import hmac
from flask import current_app, jsonify
from flask_login import UserMixin


TOKEN_HEADER = 'X-API-Token'


class ApiClient(UserMixin):
    """Caller of the JSON API. There are no user accounts, only the token."""

    id = 'api'


def token_matches(provided: str, expected: str) -> bool:
    """
    Compare tokens in constant time.

    Args:
        provided: Token sent by the client (may be None)
        expected: Configured token

    Returns:
        True if both are equal
    """
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def load_api_client(request):
    """
    Authenticate a request by its X-API-Token header.

    Every request is accepted when API_TOKEN is not configured.

    Returns:
        ApiClient, or None if the token is missing or wrong
    """
    expected = current_app.config.get('API_TOKEN')
    if not expected or token_matches(request.headers.get(TOKEN_HEADER), expected):
        return ApiClient()
    return None


def unauthorized():
    return jsonify({'error': 'Invalid or missing API token'}), 401
