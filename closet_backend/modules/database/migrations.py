import sqlite3
import time
from .exceptions import DatabaseMigrationError

def get_db_version(conn):
    """
    Get the current database schema version.

    Args:
        conn: SQLite connection

    Returns:
        int: Current schema version
    """
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT value FROM settings WHERE key = 'schema_version'")
        result = cursor.fetchone()
        return int(result['value']) if result else 0
    except sqlite3.OperationalError:
        # Settings table might not exist yet
        return 0
    except Exception as e:
        raise DatabaseMigrationError(f"Failed to get database version: {str(e)}")

def set_db_version(conn, version):
    """
    Set the database schema version.

    Args:
        conn: SQLite connection
        version (int): Schema version to set
    """
    cursor = conn.cursor()
    try:
        cursor.execute(
            "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
            ('schema_version', str(version), int(time.time()))
        )
        conn.commit()
    except Exception as e:
        conn.rollback()
        raise DatabaseMigrationError(f"Failed to set database version: {str(e)}")

def migrate_database(conn):
    """
    Run necessary database migrations.

    Args:
        conn: SQLite connection

    Returns:
        bool: True if migrations were applied
    """
    try:
        current_version = get_db_version(conn)
        latest_version = 2  # Update this as new migrations are added

        if current_version >= latest_version:
            return False  # No migrations needed

        if current_version < 1:
            migrate_to_v1(conn)

        if current_version < 2:
            migrate_to_v2(conn)

        set_db_version(conn, latest_version)
        return True
    except Exception as e:
        conn.rollback()
        raise DatabaseMigrationError(f"Failed to migrate database: {str(e)}")

def migrate_to_v1(conn):
    """
    Migrate database to version 1.
    Adds the barcode column so garments can be found by printed label.

    Args:
        conn: SQLite connection
    """
    cursor = conn.cursor()

    try:
        try:
            cursor.execute("ALTER TABLE garments ADD COLUMN barcode_id TEXT")
        except sqlite3.OperationalError:
            # Column might already exist
            pass

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_garments_barcode ON garments(barcode_id)')
        conn.commit()
    except Exception as e:
        conn.rollback()
        raise DatabaseMigrationError(f"Failed to migrate to version 1: {str(e)}")

def migrate_to_v2(conn):
    """
    Migrate database to version 2.
    Adds garment status and box capacity used by the box assignment.

    Args:
        conn: SQLite connection
    """
    cursor = conn.cursor()

    try:
        try:
            cursor.execute("ALTER TABLE garments ADD COLUMN status TEXT NOT NULL DEFAULT 'available'")
        except sqlite3.OperationalError:
            pass

        try:
            cursor.execute("ALTER TABLE boxes ADD COLUMN capacity INTEGER")
        except sqlite3.OperationalError:
            pass

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_garments_box ON garments(box_id, status)')
        conn.commit()
    except Exception as e:
        conn.rollback()
        raise DatabaseMigrationError(f"Failed to migrate to version 2: {str(e)}")
