"""
Closet NFC Backend - Authentication Routes

This module implements the API routes for operator authentication.
"""

from flask import request, jsonify

from ..middleware import auth as auth_middleware
from ..exceptions import AuthenticationError, InvalidRequestError
from ....utils.logger import get_logger

logger = get_logger(__name__)


def register_routes(app):
    """
    Register authentication-related routes with the Flask application.

    Args:
        app: Flask application instance
    """

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        """Authenticate with PIN and generate a JWT token."""
        data = request.get_json(silent=True)

        if not data:
            raise InvalidRequestError("Missing request body")

        if 'pin' not in data:
            raise InvalidRequestError("PIN is required")

        if not auth_middleware.verify_pin(data['pin']):
            # Use a generic error message for security
            raise AuthenticationError("Invalid PIN")

        token_duration = auth_middleware.TOKEN_DURATION
        try:
            token = auth_middleware.generate_token(token_duration)
        except Exception as e:
            logger.error(f"Error generating token: {e}")
            raise AuthenticationError("Authentication failed")

        return jsonify({
            'success': True,
            'data': {
                'token': token,
                'expires_in': token_duration,
                'token_type': 'Bearer'
            }
        })

    logger.info("Authentication routes registered")
