"""
Closet NFC Backend - Authentication Middleware

This module provides operator authentication for the API server: an admin
PIN is exchanged for a short-lived JWT.
"""

import datetime
import functools
from flask import request, jsonify
import jwt
from werkzeug.security import generate_password_hash, check_password_hash

from ....utils.logger import get_logger
from ..exceptions import AuthenticationError
from ....utils.exceptions import ConfigurationError

logger = get_logger(__name__)
SECRET_KEY = None
ADMIN_PIN_HASH = None
TOKEN_DURATION = 3600


def init_auth(app, config):
    """
    Initialize authentication middleware.

    Args:
        app: Flask application instance
        config: Configuration dictionary
    """
    global SECRET_KEY, ADMIN_PIN_HASH, TOKEN_DURATION
    # Use app's secret key for JWT
    SECRET_KEY = app.config['SECRET_KEY']

    admin_pin = config['api'].get('admin_pin')
    if not admin_pin:
        raise ConfigurationError("api.admin_pin must be set")

    ADMIN_PIN_HASH = generate_password_hash(str(admin_pin))
    TOKEN_DURATION = int(config['api'].get('token_duration', TOKEN_DURATION))

    logger.info("Authentication middleware initialized")


def _unauthorized(message):
    return jsonify({
        'success': False,
        'error': {
            'message': message,
            'status': 401
        }
    }), 401


def require_auth(f):
    """
    Decorator to require authentication for a route.

    Args:
        f: Function to decorate

    Returns:
        decorated function
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization')

        if not auth_header or not auth_header.startswith('Bearer '):
            return _unauthorized('Authentication required')

        token = auth_header.split(' ', 1)[1]
        payload = check_token(token)

        if not payload:
            return _unauthorized('Invalid or expired token')

        # Attach token payload to request for use in route handlers
        request.auth = payload
        return f(*args, **kwargs)

    return decorated


def verify_pin(pin):
    """
    Verify if a PIN is valid.

    Args:
        pin (str): PIN to verify

    Returns:
        bool: True if PIN is valid
    """
    if not pin or not ADMIN_PIN_HASH:
        return False

    return check_password_hash(ADMIN_PIN_HASH, str(pin))


def check_token(token):
    """
    Verify if a token is valid.

    Args:
        token (str): JWT token to check

    Returns:
        dict: Token payload if valid, None otherwise
    """
    if not token or not SECRET_KEY:
        return None

    try:
        return jwt.decode(token, SECRET_KEY, algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        logger.debug("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        return None


def generate_token(duration=None):
    """
    Generate a new JWT token.

    Args:
        duration (int, optional): Token validity in seconds

    Returns:
        str: JWT token
    """
    if not SECRET_KEY:
        raise AuthenticationError("Authentication not initialized")

    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        'iat': now,
        'exp': now + datetime.timedelta(seconds=duration or TOKEN_DURATION),
        'role': 'operator'
    }

    return jwt.encode(payload, SECRET_KEY, algorithm='HS256')
