"""
Closet NFC Backend - Tag Routes

This module implements the API routes for managing NFC tag bindings.
"""

import threading
import time

from flask import request, jsonify

from ...database import db_manager
from ...nfc import nfc_controller, normalize, is_valid_identifier, is_serial_identifier
from ..exceptions import ResourceNotFoundError, InvalidRequestError
from ..middleware.auth import require_auth
from ....utils.event_bus import event_bus, EventNames
from ....utils.logger import get_logger
from ....utils.validators import validate_entity_type

logger = get_logger(__name__)

# Keep track of the last successful scan for UI feedback
_last_scan_lock = threading.Lock()
last_scanned_tag = {
    'tag_id': None,
    'source_kind': None,
    'timestamp': None
}


def _remember_scan(outcome):
    if not outcome.success:
        return
    with _last_scan_lock:
        last_scanned_tag['tag_id'] = outcome.tag_id
        last_scanned_tag['source_kind'] = outcome.source_kind.value
        last_scanned_tag['timestamp'] = time.time()


def _entity_from_body(data):
    if not data:
        raise InvalidRequestError("Missing request body")

    for field in ('entity_type', 'entity_id'):
        if data.get(field) in (None, ''):
            raise InvalidRequestError(f"Missing required field: {field}")

    return validate_entity_type(data['entity_type']), data['entity_id']


def register_routes(app):
    """
    Register tag-related routes with the Flask application.

    Args:
        app: Flask application instance
    """
    event_bus.off(EventNames.TAG_SCANNED, _remember_scan)
    event_bus.on(EventNames.TAG_SCANNED, _remember_scan)

    @app.route('/api/tags/last-scanned', methods=['GET'])
    @require_auth
    def get_last_scanned():
        """Get the last tag identifier a scan produced."""
        with _last_scan_lock:
            tag = dict(last_scanned_tag)

        return jsonify({
            'success': True,
            'data': {
                'tag': tag if tag['tag_id'] else None
            }
        })

    @app.route('/api/tags/<tag_id>', methods=['GET'])
    @require_auth
    def get_tag(tag_id):
        """Get the garment or box a tag identifier is bound to."""
        binding = db_manager.find_entity_by_nfc_tag(normalize(tag_id))

        if not binding:
            raise ResourceNotFoundError(f"Tag {tag_id} is not associated with anything")

        return jsonify({
            'success': True,
            'data': {
                'binding': binding
            }
        })

    @app.route('/api/tags/assign', methods=['POST'])
    @require_auth
    def assign_tag():
        """Bind a tag identifier to a garment or box."""
        data = request.get_json(silent=True)
        entity_type, entity_id = _entity_from_body(data)

        tag_id = normalize(data.get('tag_id') or '')
        if not (is_valid_identifier(tag_id) or is_serial_identifier(tag_id)):
            raise InvalidRequestError(f"Invalid tag ID: {data.get('tag_id')!r}")

        db_manager.assign_nfc_tag(entity_type, entity_id, tag_id)
        event_bus.emit(EventNames.TAG_ASSIGNED, entity_type=entity_type,
                       entity_id=entity_id, tag_id=tag_id)

        return jsonify({
            'success': True,
            'data': {
                'tag_id': tag_id,
                'entity_type': entity_type,
                'entity_id': entity_id
            }
        })

    @app.route('/api/tags/release', methods=['POST'])
    @require_auth
    def release_tag():
        """Remove the tag binding from a garment or box."""
        entity_type, entity_id = _entity_from_body(request.get_json(silent=True))

        released = nfc_controller.release_tag(entity_type, entity_id)

        return jsonify({
            'success': True,
            'data': {
                'released': released
            }
        })

    logger.info("Tag routes registered")
