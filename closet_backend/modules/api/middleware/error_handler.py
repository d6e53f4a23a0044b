"""
Closet NFC Backend - Error Handler Middleware

This module maps exceptions raised by route handlers to JSON error responses.
"""

import traceback
from flask import jsonify, request

from ....utils.exceptions import ValidationError
from ....utils.logger import get_logger
from ...database.exceptions import DatabaseError, DatabaseConstraintError, DatabaseNotFoundError
from ..exceptions import APIError

logger = get_logger(__name__)


def init_error_handlers(app):
    """
    Initialize error handlers for the Flask application.

    Args:
        app: Flask application instance
    """
    # Register error handlers for common HTTP errors
    app.register_error_handler(400, handle_bad_request)
    app.register_error_handler(401, handle_unauthorized)
    app.register_error_handler(404, handle_not_found)
    app.register_error_handler(405, handle_method_not_allowed)
    app.register_error_handler(500, handle_internal_error)

    # Register handlers for application errors
    app.register_error_handler(APIError, handle_api_error)
    app.register_error_handler(ValidationError, handle_validation_error)
    app.register_error_handler(DatabaseError, handle_database_error)

    logger.info("Error handlers initialized")


def handle_not_found(error):
    """Handle 404 errors."""
    return api_error_response(
        f"Resource not found: {request.path}",
        404
    )


def handle_bad_request(error):
    """Handle 400 errors."""
    return api_error_response(
        getattr(error, 'description', None) or "Bad request",
        400
    )


def handle_unauthorized(error):
    """Handle 401 errors."""
    return api_error_response(
        getattr(error, 'description', None) or "Unauthorized",
        401
    )


def handle_method_not_allowed(error):
    """Handle 405 errors."""
    return api_error_response(
        f"Method {request.method} not allowed for {request.path}",
        405
    )


def handle_internal_error(error):
    """
    Handle 500 errors.

    Args:
        error: Error object

    Returns:
        Response: JSON error response
    """
    # Log the full traceback for server-side debugging
    logger.error(f"Internal server error: {error}")
    logger.error(traceback.format_exc())

    # Return generic error to client
    return api_error_response(
        "An internal server error occurred",
        500
    )


def handle_api_error(error):
    """Handle custom API errors."""
    return api_error_response(
        error.message,
        error.status_code,
        error.payload
    )


def handle_validation_error(error):
    """Handle invalid input detected below the route layer."""
    return api_error_response(error.message, 400, error.details or None)


def handle_database_error(error):
    """
    Handle database errors.

    Binding conflicts and full boxes become 409, missing rows 404, anything
    else is an internal error.
    """
    if isinstance(error, DatabaseConstraintError):
        return api_error_response(str(error), 409)
    if isinstance(error, DatabaseNotFoundError):
        return api_error_response(str(error), 404)
    return handle_internal_error(error)


def api_error_response(message, status_code, details=None):
    """
    Create a standardized error response.

    Args:
        message (str): Error message
        status_code (int): HTTP status code
        details (dict, optional): Additional error details

    Returns:
        tuple: (JSON response, status code)
    """
    response = {
        'success': False,
        'error': {
            'message': message,
            'status': status_code
        }
    }

    if details:
        response['error']['details'] = details

    return jsonify(response), status_code
