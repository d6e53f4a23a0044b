"""
Closet NFC Backend

Reads, writes and verifies the NFC tags attached to garments and storage
boxes, and serves the closet catalogue over a small REST API.
"""

__version__ = '0.1.0'
