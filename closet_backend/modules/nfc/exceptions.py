"""
exceptions.py - Custom exception classes for the NFC module.

These are raised by the hardware adapter and the codec. Sessions catch them
and turn them into outcome values; nothing here escapes a session.
"""

class NFCError(Exception):
    """Base exception for all NFC related errors."""
    pass

class NFCHardwareError(NFCError):
    """Exception raised when there's a hardware communication error."""
    pass

class NFCUnsupportedError(NFCHardwareError):
    """Exception raised when the NFC driver or reader is not available on this host."""
    pass

class NFCNoTagError(NFCError):
    """Exception raised when an operation requires a tag but none is present."""
    pass

class NFCReadError(NFCError):
    """Exception raised when tag reading fails."""
    pass

class NFCWriteError(NFCError):
    """Exception raised when tag writing fails."""
    pass

class NFCTagNotWritableError(NFCWriteError):
    """Exception raised when the tag is read-only or too small for the message."""
    pass

class NFCSessionError(NFCError):
    """Exception raised when a session is misused (started twice, overlapping sessions)."""
    pass
