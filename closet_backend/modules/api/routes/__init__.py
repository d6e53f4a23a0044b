"""
Closet NFC Backend - API Routes

This package contains all route handlers for the API server.
"""

from . import auth, nfc, tags, garments

__all__ = ['auth', 'nfc', 'tags', 'garments']
