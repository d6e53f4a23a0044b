"""
Closet NFC Backend - NFC Routes

This module implements the API routes for scanning, writing and inspecting
NFC tags. Each scan or write call blocks until its session resolves; a
failed session is a normal response with ``success: false``.
"""

from flask import request, jsonify

from ...nfc import nfc_controller
from ..exceptions import InvalidRequestError
from ..middleware.auth import require_auth
from ....utils.logger import get_logger
from ....utils.validators import validate_entity_type

logger = get_logger(__name__)


def _entity_from(data, prefix=''):
    """Read an optional (entity_type, entity_id) pair from a request body."""
    entity_type = data.get(f'{prefix}entity_type')
    entity_id = data.get(f'{prefix}entity_id')

    if entity_type is None and entity_id is None:
        return None
    if entity_type is None or entity_id is None:
        raise InvalidRequestError("entity_type and entity_id must be given together")

    return validate_entity_type(entity_type), entity_id


def _timeout_from(data):
    timeout = data.get('timeout')
    if timeout is None:
        return None
    try:
        timeout = float(timeout)
    except (TypeError, ValueError):
        raise InvalidRequestError("timeout must be a number of seconds")
    if timeout <= 0:
        raise InvalidRequestError("timeout must be positive")
    return timeout


def _outcome_response(outcome):
    return jsonify({
        'success': outcome.success,
        'data': outcome.to_dict()
    })


def register_routes(app):
    """
    Register NFC routes with the Flask application.

    Args:
        app: Flask application instance
    """

    @app.route('/api/nfc/support', methods=['GET'])
    @require_auth
    def get_support():
        """Report whether an NFC reader is usable on this host."""
        return jsonify({
            'success': True,
            'data': nfc_controller.get_nfc_support_info()
        })

    @app.route('/api/nfc/status', methods=['GET'])
    @require_auth
    def get_status():
        """Report whether a scan or write is in progress."""
        return jsonify({
            'success': True,
            'data': {
                'reading': nfc_controller.is_reading(),
                'writing': nfc_controller.is_writing()
            }
        })

    @app.route('/api/nfc/read', methods=['POST'])
    @require_auth
    def read_tag():
        """
        Scan one tag.

        Body: ``skip_existence_check`` (bool), optional ``entity_type`` and
        ``entity_id`` of the entity the tag is meant for, optional ``timeout``.
        """
        data = request.get_json(silent=True) or {}

        outcome = nfc_controller.read_tag(
            skip_existence_check=bool(data.get('skip_existence_check', False)),
            intended_entity=_entity_from(data),
            timeout=_timeout_from(data)
        )
        return _outcome_response(outcome)

    @app.route('/api/nfc/write', methods=['POST'])
    @require_auth
    def write_tag():
        """
        Write an identifier to the next tag presented and verify it.

        Body: optional ``tag_id`` (generated when absent), optional
        ``release_entity_type`` and ``release_entity_id`` to unbind first,
        optional ``timeout``.
        """
        data = request.get_json(silent=True) or {}

        outcome = nfc_controller.rewrite_tag(
            tag_id=data.get('tag_id'),
            release_from=_entity_from(data, prefix='release_'),
            timeout=_timeout_from(data)
        )
        return _outcome_response(outcome)

    @app.route('/api/nfc/cancel', methods=['POST'])
    @require_auth
    def cancel():
        """Cancel the scan or write in progress."""
        cancelled = nfc_controller.cancel()
        return jsonify({
            'success': True,
            'data': {
                'cancelled': cancelled
            }
        })

    @app.route('/api/nfc/inspect', methods=['GET'])
    @require_auth
    def inspect_tag():
        """Scan a tag and list its records, the selected identifier and its binding."""
        timeout = _timeout_from(request.args)
        result = nfc_controller.inspect_tag(timeout=timeout)
        return jsonify({
            'success': result['outcome']['success'],
            'data': result
        })

    logger.info("NFC routes registered")
