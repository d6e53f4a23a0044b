import os
import sqlite3
import time
import logging
from concurrent.futures import ThreadPoolExecutor

from .models import (
    DatabaseConnection, create_tables, row_to_dict,
    GARMENT_COLUMNS, GARMENT_STATUSES, DEFAULT_BOX_CAPACITY
)
from .migrations import migrate_database
from .exceptions import (
    DatabaseError, DatabaseQueryError, DatabaseConstraintError, DatabaseNotFoundError
)
from ...utils.exceptions import ValidationError
from ...utils.validators import parse_code_list, validate_entity_type

# Configure logging
logger = logging.getLogger(__name__)

# Database file path
DEFAULT_DB_PATH = os.path.expanduser("~/.closet_nfc/closet.db")
db_path = DEFAULT_DB_PATH

# Batch lookup defaults
MAX_CODES = 50
CHUNK_SIZE = 20
POINT_QUERY_LIMIT = 10
MAX_WORKERS = 8

# entity_type -> table
ENTITY_TABLES = {
    'garment': 'garments',
    'box': 'boxes',
}

GARMENT_SELECT = f"SELECT {', '.join(GARMENT_COLUMNS)} FROM garments"

def set_database_path(path):
    """
    Set custom database path.

    Args:
        path (str): Path to database file
    """
    global db_path
    db_path = path

    # Ensure directory exists
    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

def initialize():
    """
    Initialize the database connection and ensure schema is up to date.

    Returns:
        bool: True if initialization successful
    """
    try:
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with DatabaseConnection(db_path) as conn:
            create_tables(conn)
            migrate_database(conn)

            # Check database integrity
            cursor = conn.cursor()
            cursor.execute("PRAGMA integrity_check")
            result = cursor.fetchone()
            if result['integrity_check'] != 'ok':
                logger.error(f"Database integrity check failed: {result['integrity_check']}")
                return False

        logger.info(f"Database initialized successfully at {db_path}")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        return False

def shutdown():
    """
    Properly close database connections.
    """
    # Connections are opened per call through DatabaseConnection
    logger.info("Database connections closed")

def _table_for(entity_type):
    return ENTITY_TABLES[validate_entity_type(entity_type)]

# ---------------------------------------------------------------------------
# Garments and boxes
# ---------------------------------------------------------------------------

def create_garment(name, type=None, color=None, season=None, style=None, image_url=None,
                   box_id=None, nfc_tag_id=None, barcode_id=None, status='available'):
    """
    Add a garment to the catalogue.

    Returns:
        dict: The stored garment

    Raises:
        DatabaseConstraintError: If the NFC tag is already bound or the status is unknown
    """
    if status not in GARMENT_STATUSES:
        raise DatabaseConstraintError(f"Unknown garment status: {status}")

    try:
        current_time = int(time.time())
        with DatabaseConnection(db_path) as conn:
            cursor = conn.cursor()
            if nfc_tag_id:
                _ensure_tag_free(cursor, nfc_tag_id)
            cursor.execute("""
                INSERT INTO garments (
                    name, type, color, season, style, image_url, box_id,
                    nfc_tag_id, barcode_id, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                name, type, color, season, style, image_url, box_id,
                nfc_tag_id or None, barcode_id or None, status, current_time, current_time
            ))
            garment_id = cursor.lastrowid
            cursor.execute(f"{GARMENT_SELECT} WHERE id = ?", (garment_id,))
            return row_to_dict(cursor.fetchone())
    except DatabaseError:
        raise
    except sqlite3.IntegrityError as e:
        logger.error(f"Integrity error creating garment {name}: {str(e)}")
        raise DatabaseConstraintError(f"Failed to create garment: {str(e)}")
    except Exception as e:
        logger.error(f"Error creating garment {name}: {str(e)}")
        raise DatabaseQueryError(f"Failed to create garment: {str(e)}")

def get_garment(garment_id):
    """
    Get a garment by ID.

    Returns:
        dict or None: The garment, None if it does not exist
    """
    try:
        with DatabaseConnection(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"{GARMENT_SELECT} WHERE id = ?", (garment_id,))
            return row_to_dict(cursor.fetchone())
    except Exception as e:
        logger.error(f"Error retrieving garment {garment_id}: {str(e)}")
        raise DatabaseQueryError(f"Failed to get garment: {str(e)}")

def create_box(name, location=None, capacity=None, nfc_tag_id=None):
    """
    Add a storage box.

    Returns:
        dict: The stored box
    """
    try:
        current_time = int(time.time())
        with DatabaseConnection(db_path) as conn:
            cursor = conn.cursor()
            if nfc_tag_id:
                _ensure_tag_free(cursor, nfc_tag_id)
            cursor.execute(
                "INSERT INTO boxes (name, location, capacity, nfc_tag_id, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (name, location, capacity, nfc_tag_id or None, current_time, current_time)
            )
            cursor.execute("SELECT * FROM boxes WHERE id = ?", (cursor.lastrowid,))
            return row_to_dict(cursor.fetchone())
    except DatabaseError:
        raise
    except sqlite3.IntegrityError as e:
        logger.error(f"Integrity error creating box {name}: {str(e)}")
        raise DatabaseConstraintError(f"Failed to create box: {str(e)}")
    except Exception as e:
        logger.error(f"Error creating box {name}: {str(e)}")
        raise DatabaseQueryError(f"Failed to create box: {str(e)}")

def get_box(box_id):
    """
    Get a box by ID, with the number of available garments in it.

    Returns:
        dict or None: The box, None if it does not exist
    """
    try:
        with DatabaseConnection(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT b.*, (
                    SELECT COUNT(*) FROM garments g
                    WHERE g.box_id = b.id AND g.status = 'available'
                ) AS garment_count
                FROM boxes b WHERE b.id = ?
            """, (box_id,))
            return row_to_dict(cursor.fetchone())
    except Exception as e:
        logger.error(f"Error retrieving box {box_id}: {str(e)}")
        raise DatabaseQueryError(f"Failed to get box: {str(e)}")

# ---------------------------------------------------------------------------
# Tag bindings
# ---------------------------------------------------------------------------

def _find_tag_owner(cursor, tag_id):
    """Return (entity_type, row) for the entity bound to tag_id, garments first."""
    for entity_type, table in ENTITY_TABLES.items():
        cursor.execute(f"SELECT id, name FROM {table} WHERE nfc_tag_id = ?", (tag_id,))
        row = cursor.fetchone()
        if row:
            return entity_type, row
    return None, None

def _ensure_tag_free(cursor, tag_id, entity_type=None, entity_id=None):
    owner_type, owner = _find_tag_owner(cursor, tag_id)
    if owner is None:
        return
    if owner_type == entity_type and str(owner['id']) == str(entity_id):
        return
    raise DatabaseConstraintError(
        f'Tag {tag_id} is already associated with {owner_type} "{owner["name"]}"'
    )

def check_tag_exists(tag_id):
    """
    Check whether an NFC tag identifier is bound to a garment or a box.

    Args:
        tag_id (str): Tag identifier

    Returns:
        dict: ``exists``, ``entity_type``, ``entity_id`` and ``entity_name``
              (the last three None when the tag is free)
    """
    try:
        with DatabaseConnection(db_path) as conn:
            entity_type, row = _find_tag_owner(conn.cursor(), tag_id)
    except Exception as e:
        logger.error(f"Error checking tag {tag_id}: {str(e)}")
        raise DatabaseQueryError(f"Failed to check tag: {str(e)}")

    if row is None:
        return {'exists': False, 'entity_type': None, 'entity_id': None, 'entity_name': None}
    return {
        'exists': True,
        'entity_type': entity_type,
        'entity_id': row['id'],
        'entity_name': row['name'],
    }

def find_entity_by_nfc_tag(tag_id):
    """
    Look up the entity an NFC tag is bound to.

    Returns:
        dict or None: ``tag_id``, ``entity_type``, ``entity_id``, ``entity_name``
    """
    result = check_tag_exists(tag_id)
    if not result['exists']:
        return None
    return {
        'tag_id': tag_id,
        'entity_type': result['entity_type'],
        'entity_id': result['entity_id'],
        'entity_name': result['entity_name'],
    }

def assign_nfc_tag(entity_type, entity_id, tag_id):
    """
    Bind an NFC tag to a garment or box, replacing the entity's previous tag.

    Returns:
        bool: True if the binding was stored

    Raises:
        DatabaseNotFoundError: If the entity does not exist
        DatabaseConstraintError: If the tag is bound to another entity
    """
    table = _table_for(entity_type)
    try:
        with DatabaseConnection(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT id FROM {table} WHERE id = ?", (entity_id,))
            if not cursor.fetchone():
                raise DatabaseNotFoundError(f"{entity_type.capitalize()} {entity_id} does not exist")

            _ensure_tag_free(cursor, tag_id, entity_type, entity_id)

            cursor.execute(
                f"UPDATE {table} SET nfc_tag_id = ?, updated_at = ? WHERE id = ?",
                (tag_id, int(time.time()), entity_id)
            )
            logger.info(f"Bound tag {tag_id} to {entity_type} {entity_id}")
            return True
    except DatabaseError:
        raise
    except sqlite3.IntegrityError as e:
        logger.error(f"Integrity error binding tag {tag_id} to {entity_type} {entity_id}: {str(e)}")
        raise DatabaseConstraintError(f"Failed to assign tag: {str(e)}")
    except Exception as e:
        logger.error(f"Error binding tag {tag_id} to {entity_type} {entity_id}: {str(e)}")
        raise DatabaseQueryError(f"Failed to assign tag: {str(e)}")

def remove_entity_nfc_tag(entity_type, entity_id):
    """
    Remove the NFC tag binding from a garment or box.

    Args:
        entity_type (str): 'garment' or 'box'
        entity_id: Entity ID

    Returns:
        bool: True if a tag binding was removed
    """
    table = _table_for(entity_type)
    try:
        with DatabaseConnection(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE {table} SET nfc_tag_id = NULL, updated_at = ? "
                f"WHERE id = ? AND nfc_tag_id IS NOT NULL",
                (int(time.time()), entity_id)
            )
            return cursor.rowcount > 0
    except Exception as e:
        logger.error(f"Error removing tag from {entity_type} {entity_id}: {str(e)}")
        raise DatabaseQueryError(f"Failed to remove tag binding: {str(e)}")

# ---------------------------------------------------------------------------
# Batch lookup and box assignment
# ---------------------------------------------------------------------------

def _query_garments(column, codes):
    """Garments whose ``column`` equals one of ``codes``, on a connection of its own."""
    placeholders = ', '.join('?' for _ in codes)
    with DatabaseConnection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(f"{GARMENT_SELECT} WHERE {column} IN ({placeholders})", tuple(codes))
        return [dict(row) for row in cursor.fetchall()]

def find_garments_by_codes(raw_codes, max_codes=MAX_CODES, chunk_size=CHUNK_SIZE,
                           point_query_limit=POINT_QUERY_LIMIT, max_workers=MAX_WORKERS):
    """
    Find the garments matching a batch of scanned NFC tag or barcode values.

    Args:
        raw_codes (str or list): Codes separated by "/", commas, whitespace or semicolons
        max_codes (int): Only the first ``max_codes`` codes are searched
        chunk_size (int): Codes per ``IN`` query for large batches
        point_query_limit (int): Batches up to this size use one query per code
        max_workers (int): Concurrent queries

    Returns:
        dict: ``garments`` (deduplicated, in first-found order), ``not_found``
              (searched codes without a match), ``truncated`` and ``total_codes``
    """
    codes = parse_code_list(raw_codes)
    searched = codes[:max_codes]
    if len(codes) > max_codes:
        logger.warning(f"Searching only the first {max_codes} of {len(codes)} codes")

    if not searched:
        return {'garments': [], 'not_found': [], 'truncated': False, 'total_codes': 0}

    if len(searched) <= point_query_limit:
        batches = [[code] for code in searched]
    else:
        batches = [searched[i:i + chunk_size] for i in range(0, len(searched), chunk_size)]

    jobs = [(column, batch) for column in ('nfc_tag_id', 'barcode_id') for batch in batches]

    try:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(lambda job: _query_garments(*job), jobs))
    except Exception as e:
        logger.error(f"Error looking up garments by code: {str(e)}")
        raise DatabaseQueryError(f"Failed to look up garments: {str(e)}")

    garments = {}
    for rows in results:
        for garment in rows:
            garments.setdefault(garment['id'], garment)

    found_codes = set()
    for garment in garments.values():
        for column in ('nfc_tag_id', 'barcode_id'):
            if garment[column] in searched:
                found_codes.add(garment[column])

    not_found = [code for code in searched if code not in found_codes]
    logger.debug(f"Batch lookup: {len(garments)} garments, {len(not_found)} codes not found")

    return {
        'garments': list(garments.values()),
        'not_found': not_found,
        'truncated': len(codes) > max_codes,
        'total_codes': len(codes),
    }

def _box_load(cursor, exclude_ids):
    """Available garment count per box, ignoring garments about to be moved."""
    placeholders = ', '.join('?' for _ in exclude_ids)
    cursor.execute(f"""
        SELECT b.id, b.name, b.location, COALESCE(b.capacity, ?) AS capacity, (
            SELECT COUNT(*) FROM garments g
            WHERE g.box_id = b.id AND g.status = 'available' AND g.id NOT IN ({placeholders})
        ) AS garment_count
        FROM boxes b
    """, (DEFAULT_BOX_CAPACITY, *exclude_ids))
    return {row['id']: dict(row) for row in cursor.fetchall()}

def assign_garments_to_box(garment_ids, box_id):
    """
    Put garments into a box and mark them available again.

    If the box would overflow, the garments go to the emptiest box that has
    room for all of them instead.

    Args:
        garment_ids (list): Garment IDs
        box_id: Requested box ID

    Returns:
        dict: ``box_id`` and ``box_name`` actually used, ``location``,
              ``assigned`` count, ``restored`` (garments that were in use)
              and ``redirected``

    Raises:
        DatabaseNotFoundError: If the box does not exist
        ValidationError: If box_id is not an integer
        DatabaseConstraintError: If no box has room
    """
    garment_ids = list(dict.fromkeys(garment_ids))
    if not garment_ids:
        raise DatabaseConstraintError("No garments to assign")

    try:
        box_id = int(box_id)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid box ID: {box_id!r}", {'box_id': box_id})

    try:
        with DatabaseConnection(db_path) as conn:
            cursor = conn.cursor()
            boxes = _box_load(cursor, garment_ids)

            box = boxes.get(box_id)
            if box is None:
                raise DatabaseNotFoundError(f"Box {box_id} does not exist")

            target = box
            if box['garment_count'] + len(garment_ids) > box['capacity']:
                candidates = sorted(
                    (b for b in boxes.values() if b['garment_count'] + len(garment_ids) <= b['capacity']),
                    key=lambda b: b['garment_count']
                )
                if not candidates:
                    raise DatabaseConstraintError(f"No box has room for {len(garment_ids)} garments")
                target = candidates[0]
                logger.info(f"Box {box['name']} is full, using {target['name']} instead")

            placeholders = ', '.join('?' for _ in garment_ids)
            cursor.execute(
                f"SELECT COUNT(*) AS in_use FROM garments WHERE status = 'in_use' AND id IN ({placeholders})",
                tuple(garment_ids)
            )
            restored = cursor.fetchone()['in_use']

            cursor.execute(
                f"UPDATE garments SET box_id = ?, status = 'available', updated_at = ? "
                f"WHERE id IN ({placeholders})",
                (target['id'], int(time.time()), *garment_ids)
            )
            assigned = cursor.rowcount

            logger.info(f"Assigned {assigned} garments to box {target['name']} ({restored} restored)")
            return {
                'box_id': target['id'],
                'box_name': target['name'],
                'location': target['location'],
                'assigned': assigned,
                'restored': restored,
                'redirected': target['id'] != box['id'],
            }
    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Error assigning garments to box {box_id}: {str(e)}")
        raise DatabaseQueryError(f"Failed to assign garments to box: {str(e)}")
