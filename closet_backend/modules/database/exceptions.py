class DatabaseError(Exception):
    """Base exception for all database related errors."""
    pass

class DatabaseConnectionError(DatabaseError):
    """Exception raised when database connection fails."""
    pass

class DatabaseQueryError(DatabaseError):
    """Exception raised when a database query fails."""
    pass

class DatabaseMigrationError(DatabaseError):
    """Exception raised when database migration fails."""
    pass

class DatabaseConstraintError(DatabaseError):
    """Exception raised when a tag is already bound elsewhere or a box has no room."""
    pass

class DatabaseNotFoundError(DatabaseError):
    """Exception raised when a garment or box does not exist."""
    pass
