"""
NFC Module - Reads, registers and writes the NFC tags attached to garments and boxes.

This module is responsible for interfacing with the NFC hardware, working out
which identifier a tag carries, and writing verified identifiers to tags.
"""

# Import public interface functions from controller
from .nfc_controller import (
    initialize,
    shutdown,
    check_nfc_support,
    get_nfc_support_info,
    read_tag,
    write_tag,
    cancel,
    is_reading,
    is_writing,
    continuous_scan,
    inspect_tag,
    release_tag,
    rewrite_tag
)

from .sessions import (
    ScanOutcome,
    WriteOutcome,
    SourceKind,
    ErrorKind,
    SessionState
)

from .tag_processor import (
    normalize,
    is_valid_identifier,
    is_serial_identifier,
    generate_new_identifier
)

# Import exceptions for external use
from .exceptions import (
    NFCError,
    NFCHardwareError,
    NFCUnsupportedError,
    NFCNoTagError,
    NFCReadError,
    NFCWriteError,
    NFCTagNotWritableError,
    NFCSessionError
)

__all__ = [
    # Main controller functions
    'initialize',
    'shutdown',
    'check_nfc_support',
    'get_nfc_support_info',
    'read_tag',
    'write_tag',
    'cancel',
    'is_reading',
    'is_writing',
    'continuous_scan',
    'inspect_tag',
    'release_tag',
    'rewrite_tag',

    # Outcomes
    'ScanOutcome',
    'WriteOutcome',
    'SourceKind',
    'ErrorKind',
    'SessionState',

    # Identifier helpers
    'normalize',
    'is_valid_identifier',
    'is_serial_identifier',
    'generate_new_identifier',

    # Exceptions
    'NFCError',
    'NFCHardwareError',
    'NFCUnsupportedError',
    'NFCNoTagError',
    'NFCReadError',
    'NFCWriteError',
    'NFCTagNotWritableError',
    'NFCSessionError'
]
