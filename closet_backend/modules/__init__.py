"""
Modules package for the closet NFC backend.

This package contains all the specialized functionality modules:
- nfc: Reads, writes and verifies the NFC tags on garments and boxes
- database: Stores garments, boxes and their tag bindings
- api: Provides the web API used by the closet front end
"""
