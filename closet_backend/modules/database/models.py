import sqlite3

from .exceptions import DatabaseConnectionError

GARMENT_STATUSES = ('available', 'in_use')
DEFAULT_BOX_CAPACITY = 15

GARMENT_COLUMNS = (
    'id', 'name', 'type', 'color', 'season', 'style', 'image_url', 'box_id',
    'nfc_tag_id', 'barcode_id', 'status', 'created_at', 'updated_at'
)

BOX_COLUMNS = ('id', 'name', 'location', 'capacity', 'nfc_tag_id', 'created_at', 'updated_at')

def create_tables(conn):
    """
    Create database tables if they don't exist.

    Args:
        conn: SQLite connection
    """
    cursor = conn.cursor()

    # Boxes table - storage boxes, optionally tagged
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS boxes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        location TEXT,
        capacity INTEGER,
        nfc_tag_id TEXT UNIQUE,
        created_at INTEGER,
        updated_at INTEGER
    )
    ''')

    # Garments table - catalogue of garments, optionally tagged
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS garments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        type TEXT,
        color TEXT,
        season TEXT,
        style TEXT,
        image_url TEXT,
        box_id INTEGER,
        nfc_tag_id TEXT UNIQUE,
        barcode_id TEXT,
        status TEXT NOT NULL DEFAULT 'available',
        created_at INTEGER,
        updated_at INTEGER,
        FOREIGN KEY (box_id) REFERENCES boxes (id) ON DELETE SET NULL
    )
    ''')

    # Settings table
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at INTEGER
    )
    ''')

    # Indexes on barcode_id and status are created by the migrations,
    # since older databases lack those columns at this point
    conn.commit()

class DatabaseConnection:
    """
    Context manager for database connections.
    """

    def __init__(self, db_path):
        """
        Initialize connection to database.

        Args:
            db_path (str): Path to SQLite database file
        """
        self.db_path = db_path
        self.conn = None

    def __enter__(self):
        """
        Open connection on context enter.
        """
        try:
            self.conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise DatabaseConnectionError(f"Cannot open database {self.db_path}: {e}")
        self.conn.row_factory = sqlite3.Row  # Return rows as dictionaries

        # Enable foreign keys
        cursor = self.conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")

        # WAL lets the batch lookup threads read while a session writes
        cursor.execute("PRAGMA journal_mode = WAL")

        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        """
        Close connection on context exit.
        """
        if self.conn:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
            self.conn.close()

def row_to_dict(row):
    """Convert a sqlite3.Row to a plain dictionary (None stays None)."""
    return dict(row) if row is not None else None
