"""
Database module for the closet NFC backend.

This module provides persistent data storage for garments and boxes, the
NFC tag bindings between them and physical tags, and batch code lookups.
"""

from .db_manager import (
    # Database initialization and management
    initialize, shutdown, set_database_path,

    # Garments and boxes
    create_garment, get_garment, create_box, get_box,

    # Tag bindings
    check_tag_exists, find_entity_by_nfc_tag,
    assign_nfc_tag, remove_entity_nfc_tag,

    # Batch lookup and box assignment
    find_garments_by_codes, assign_garments_to_box
)

from .exceptions import (
    DatabaseError, DatabaseConnectionError,
    DatabaseQueryError, DatabaseMigrationError,
    DatabaseConstraintError, DatabaseNotFoundError
)
