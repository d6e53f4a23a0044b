"""
Closet NFC Backend - API Module

This module provides the REST API for the closet front end. It lets an
operator scan and write NFC tags, bind them to garments and boxes, and look
up garments from batches of scanned codes.
"""

from .api_server import (
    create_app, initialize, start, stop, is_running, get_server_url, get_api_status
)

__all__ = [
    'create_app',
    'initialize',
    'start',
    'stop',
    'is_running',
    'get_server_url',
    'get_api_status'
]
