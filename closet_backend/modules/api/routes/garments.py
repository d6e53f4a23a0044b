"""
Closet NFC Backend - Garment and Box Routes

This module implements the API routes for the garment catalogue, batch code
lookups and putting garments into boxes.
"""

from flask import request, jsonify

from ...database import db_manager
from ..exceptions import ResourceNotFoundError, InvalidRequestError
from ..middleware.auth import require_auth
from ....config import CONFIG
from ....utils.logger import get_logger
from ....utils.validators import validate_length, validate_required

logger = get_logger(__name__)

GARMENT_FIELDS = ('type', 'color', 'season', 'style', 'image_url',
                  'box_id', 'nfc_tag_id', 'barcode_id', 'status')


def _require_body():
    data = request.get_json(silent=True)
    if not data:
        raise InvalidRequestError("Missing request body")
    return data


def _code_field(data, field):
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRequestError(f"{field} must be a string")
    return value.strip().upper() or None


def register_routes(app):
    """
    Register garment and box routes with the Flask application.

    Args:
        app: Flask application instance
    """

    @app.route('/api/garments', methods=['POST'])
    @require_auth
    def create_garment():
        """Add a garment to the catalogue."""
        data = _require_body()
        name = validate_length(validate_required(data.get('name'), 'name'), 'name', max_length=200)

        fields = {field: data[field] for field in GARMENT_FIELDS if field in data}
        fields['nfc_tag_id'] = _code_field(data, 'nfc_tag_id')
        fields['barcode_id'] = _code_field(data, 'barcode_id')

        garment = db_manager.create_garment(name, **fields)
        logger.info(f"Created garment {garment['id']} ({name})")

        return jsonify({
            'success': True,
            'data': {
                'garment': garment
            }
        }), 201

    @app.route('/api/garments/<int:garment_id>', methods=['GET'])
    @require_auth
    def get_garment(garment_id):
        """Get a garment by ID."""
        garment = db_manager.get_garment(garment_id)

        if not garment:
            raise ResourceNotFoundError(f"Garment {garment_id} not found")

        return jsonify({
            'success': True,
            'data': {
                'garment': garment
            }
        })

    @app.route('/api/garments/lookup', methods=['POST'])
    @require_auth
    def lookup_garments():
        """
        Find garments for a batch of scanned codes.

        Body: ``codes``, either a string of codes separated by "/", commas,
        whitespace or semicolons, or a list of codes.
        """
        data = _require_body()
        codes = data.get('codes')
        if not isinstance(codes, (str, list)):
            raise InvalidRequestError("codes must be a string or a list")

        result = db_manager.find_garments_by_codes(codes, **CONFIG['lookup'])

        return jsonify({
            'success': True,
            'data': result
        })

    @app.route('/api/boxes', methods=['POST'])
    @require_auth
    def create_box():
        """Add a storage box."""
        data = _require_body()
        name = validate_length(validate_required(data.get('name'), 'name'), 'name', max_length=200)

        capacity = data.get('capacity')
        if capacity is not None and (not isinstance(capacity, int) or capacity <= 0):
            raise InvalidRequestError("capacity must be a positive integer")

        box = db_manager.create_box(
            name,
            location=data.get('location'),
            capacity=capacity,
            nfc_tag_id=_code_field(data, 'nfc_tag_id')
        )
        logger.info(f"Created box {box['id']} ({name})")

        return jsonify({
            'success': True,
            'data': {
                'box': box
            }
        }), 201

    @app.route('/api/boxes/<int:box_id>', methods=['GET'])
    @require_auth
    def get_box(box_id):
        """Get a box by ID."""
        box = db_manager.get_box(box_id)

        if not box:
            raise ResourceNotFoundError(f"Box {box_id} not found")

        return jsonify({
            'success': True,
            'data': {
                'box': box
            }
        })

    @app.route('/api/boxes/<int:box_id>/garments', methods=['POST'])
    @require_auth
    def assign_garments(box_id):
        """Put garments into a box, or the emptiest box with room if it is full."""
        data = _require_body()
        garment_ids = data.get('garment_ids')

        if not isinstance(garment_ids, list) or not garment_ids:
            raise InvalidRequestError("garment_ids must be a non-empty list")
        if not all(isinstance(garment_id, int) for garment_id in garment_ids):
            raise InvalidRequestError("garment_ids must be integers")

        result = db_manager.assign_garments_to_box(garment_ids, box_id)

        return jsonify({
            'success': True,
            'data': result
        })

    logger.info("Garment routes registered")
