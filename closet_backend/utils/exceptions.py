"""
exceptions.py - Base exception definitions for the closet NFC backend.

Module-specific errors (NFC, database, API) live in their own packages;
the classes here cover cross-cutting concerns.
"""

class AppError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AppError):
    """Exception raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Exception raised when configuration is invalid."""
    pass
