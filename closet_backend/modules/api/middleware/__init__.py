"""
Closet NFC Backend - API Middleware

This package contains middleware components for the API server.
"""

from . import auth, error_handler

__all__ = ['auth', 'error_handler']
