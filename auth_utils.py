# auth_utils.py
"""
Authentication utilities for testing and production
"""

from functools import wraps
from flask import current_app, g, jsonify
from flask_login import current_user as flask_current_user
from unittest.mock import Mock


class CurrentUserProxy:
    """Proxy object that delegates to get_current_user() for LOGIN_DISABLED support"""
    def __getattr__(self, name):
        user = get_current_user()
        return getattr(user, name)

    def __bool__(self):
        return get_current_user().is_authenticated


# Export current_user proxy for convenience
current_user = CurrentUserProxy()


def get_current_user():
    """
    Get current user, respecting LOGIN_DISABLED config for testing
    """
    # In testing mode with LOGIN_DISABLED, return mock user
    if current_app.config.get('LOGIN_DISABLED', False):
        if not hasattr(g, 'mock_user'):
            # Create a mock user object that behaves like a real user
            mock_user = Mock()
            mock_user.id = current_app.config.get('TEST_USER_ID', 1)
            mock_user.email = 'test@example.com'
            mock_user.organization_id = current_app.config.get('TEST_ORGANIZATION_ID', 1)
            mock_user.is_active = True
            mock_user.is_authenticated = True
            mock_user.is_anonymous = False
            mock_user.get_id.return_value = str(mock_user.id)
            g.mock_user = mock_user
        return g.mock_user

    # Normal production behavior
    return flask_current_user


def login_required(f):
    """JSON-friendly login_required that respects LOGIN_DISABLED config"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        # In testing mode with LOGIN_DISABLED=True, allow access without authentication
        if current_app.config.get('LOGIN_DISABLED', False):
            g.user_id = get_current_user().id
            return f(*args, **kwargs)

        if not flask_current_user.is_authenticated:
            return jsonify({'error': 'Authentication required'}), 401

        g.user_id = flask_current_user.id
        return f(*args, **kwargs)
    return decorated_function
