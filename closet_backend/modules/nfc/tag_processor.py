"""
tag_processor.py - Tag identifier codec and NDEF record handling.

Everything in here is pure: turning tag-derived values into canonical
identifiers, and building/parsing the single-text-record NDEF messages the
closet writes to its tags.
"""

import logging
import random
import re
import struct
import time
import uuid

from .exceptions import NFCError, NFCReadError

# Create logger
logger = logging.getLogger(__name__)

# NDEF Type Name Formats
NDEF_TNF_EMPTY = 0x00
NDEF_TNF_WELL_KNOWN = 0x01
NDEF_TNF_MIME_MEDIA = 0x02
NDEF_TNF_ABSOLUTE_URI = 0x03
NDEF_TNF_EXTERNAL = 0x04
NDEF_TNF_UNKNOWN = 0x05
NDEF_TNF_UNCHANGED = 0x06

# Well Known Type definitions
NDEF_RTD_TEXT = b'T'
NDEF_RTD_URI = b'U'

# Record header flags
FLAG_MB = 0x80  # Message Begin
FLAG_ME = 0x40  # Message End
FLAG_CF = 0x20  # Chunk Flag
FLAG_SR = 0x10  # Short Record
FLAG_IL = 0x08  # ID Length present

# Type 2 tag TLV block types
TLV_NULL = 0x00
TLV_NDEF = 0x03
TLV_PROPRIETARY = 0xFD
TLV_TERMINATOR = 0xFE

# Type 2 tags are written one 4-byte page at a time
PAGE_SIZE = 4

DEFAULT_LANGUAGE = 'en'

IDENTIFIER_PATTERN = re.compile(r'^[0-9A-F]{8,}$')
SERIAL_IDENTIFIER_PATTERN = re.compile(r'^[0-9A-F]{2}(?::[0-9A-F]{2}){5}$')

# URI record prefix table (NFC Forum URI RTD), used when inspecting tags
URI_PREFIXES = [
    '', 'http://www.', 'https://www.', 'http://', 'https://', 'tel:', 'mailto:',
    'ftp://anonymous:anonymous@', 'ftp://ftp.', 'ftps://', 'sftp://', 'smb://',
    'nfs://', 'ftp://', 'dav://', 'news:', 'telnet://', 'imap:', 'rtsp://',
    'urn:', 'pop:', 'sip:', 'sips:', 'tftp:', 'btspp://', 'btl2cap://',
    'btgoep://', 'tcpobex://', 'irdaobex://', 'file://', 'urn:epc:id:',
    'urn:epc:tag:', 'urn:epc:pat:', 'urn:epc:raw:', 'urn:epc:', 'urn:nfc:',
]


def normalize(raw):
    """
    Canonicalise a candidate tag identifier.

    Trims whitespace, uppercases and strips hyphens. Never fails; ``None``
    becomes an empty string.

    Args:
        raw (str): Value read from a tag or typed by an operator

    Returns:
        str: Normalized identifier
    """
    if raw is None:
        return ''
    return str(raw).strip().upper().replace('-', '')


def is_valid_identifier(value):
    """
    Check whether a value is a usable tag identifier (8+ hex characters).

    Args:
        value (str): Candidate identifier, normalized or not

    Returns:
        bool: True if the normalized value matches ``^[0-9A-F]{8,}$``
    """
    return bool(IDENTIFIER_PATTERN.match(normalize(value)))


def is_serial_identifier(value):
    """Check whether a value is a serial-derived "MAC-like" identifier (04:A2:3B:11:22:33)."""
    return bool(SERIAL_IDENTIFIER_PATTERN.match(normalize(value)))


def format_uid(raw_uid):
    """
    Format raw UID bytes as colon-separated uppercase hex ("04:A2:3B:...").

    Args:
        raw_uid (bytes): Raw UID from NFC reader

    Returns:
        str: Formatted UID string, or None for an empty UID
    """
    if not raw_uid:
        return None
    return ':'.join(f'{b:02X}' for b in bytes(raw_uid))


def derive_from_hardware_serial(serial, now_ms=None):
    """
    Map a hardware serial number to a six-byte "MAC-like" identifier.

    Serials of six bytes or more keep their first six bytes. Shorter serials
    are padded with the low-order bytes of the current millisecond timestamp;
    that padding only makes collisions less likely, it is not a security
    property and it is not stable across scans.

    Args:
        serial (bytes or str): Serial as raw bytes, or a string whose
                               characters are taken as byte values
        now_ms (int, optional): Timestamp override in milliseconds

    Returns:
        str: Identifier such as "04:A2:3B:11:22:33", or None if serial is empty
    """
    if not serial:
        return None

    if isinstance(serial, str):
        data = bytes(ord(c) & 0xFF for c in serial)
    else:
        data = bytes(serial)

    if len(data) >= 6:
        mac_bytes = list(data[:6])
    else:
        timestamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
        padding = [(timestamp >> (i * 8)) & 0xFF for i in range(6 - len(data))]
        mac_bytes = list(data) + padding

    return ':'.join(f'{b:02X}' for b in mac_bytes)


def generate_new_identifier():
    """
    Generate a fresh identifier for a tag that carries nothing usable.

    Uses a random UUID (OS randomness source), rendered as 32 uppercase hex
    characters. If the OS cannot supply randomness, falls back to a
    timestamp + pseudo-random composition, which is less collision resistant.

    Returns:
        str: New identifier
    """
    try:
        return uuid.uuid4().hex.upper()
    except NotImplementedError:
        logger.warning("OS randomness unavailable, using timestamp-based tag identifier")
        timestamp = int(time.time() * 1000)
        return f"{timestamp:X}{random.getrandbits(48):012X}"


def encode_text_record(text, language=DEFAULT_LANGUAGE):
    """
    Build an NDEF text record payload (status byte + language code + UTF-8 text).

    Args:
        text (str): Text to encode
        language (str): IANA language code

    Returns:
        bytes: Text record payload
    """
    language_code = language.encode('ascii')
    if len(language_code) > 0x3F:
        raise NFCError(f"Language code too long: {language}")

    # High bit clear: UTF-8
    status_byte = len(language_code) & 0x3F
    return bytes([status_byte]) + language_code + text.encode('utf-8')


def decode_text_record(raw_bytes):
    """
    Decode an NDEF text record payload.

    The first byte is a status byte whose low 6 bits give the language code
    length; the text starts after ``1 + length`` bytes. Bit 7 selects UTF-16.

    Args:
        raw_bytes (bytes): Text record payload

    Returns:
        str: Decoded text ('' for an empty payload)
    """
    if not raw_bytes:
        return ''

    status_byte = raw_bytes[0]
    language_code_length = status_byte & 0x3F
    encoding = 'utf-16' if (status_byte & 0x80) else 'utf-8'

    return bytes(raw_bytes[1 + language_code_length:]).decode(encoding, errors='replace')


class NdefRecord:
    """
    A single NDEF record.

    Attributes:
        tnf (int): Type Name Format
        type (bytes): Record type field
        payload (bytes): Raw payload
        id (bytes): Record ID field (usually empty)
    """

    def __init__(self, tnf, record_type=b'', payload=b'', record_id=b''):
        self.tnf = tnf
        self.type = bytes(record_type)
        self.payload = bytes(payload)
        self.id = bytes(record_id)

    @classmethod
    def text(cls, text, language=DEFAULT_LANGUAGE):
        """Create a well-known text record."""
        return cls(NDEF_TNF_WELL_KNOWN, NDEF_RTD_TEXT, encode_text_record(text, language))

    @property
    def record_type(self):
        """Record kind using Web NFC style names ("text", "url", "mime", ...)."""
        if self.tnf == NDEF_TNF_EMPTY:
            return 'empty'
        if self.tnf == NDEF_TNF_WELL_KNOWN:
            if self.type == NDEF_RTD_TEXT:
                return 'text'
            if self.type == NDEF_RTD_URI:
                return 'url'
            return 'well-known'
        if self.tnf == NDEF_TNF_MIME_MEDIA:
            return 'mime'
        if self.tnf == NDEF_TNF_ABSOLUTE_URI:
            return 'absolute-url'
        if self.tnf == NDEF_TNF_EXTERNAL:
            return 'external'
        return 'unknown'

    @property
    def is_text(self):
        return self.record_type == 'text'

    @property
    def text_value(self):
        """Decoded text for text records, None otherwise."""
        if not self.is_text:
            return None
        return decode_text_record(self.payload)

    @property
    def uri_value(self):
        """Decoded URI for URI records, None otherwise."""
        if self.record_type != 'url' or not self.payload:
            return None
        prefix_index = self.payload[0]
        prefix = URI_PREFIXES[prefix_index] if prefix_index < len(URI_PREFIXES) else ''
        return prefix + self.payload[1:].decode('utf-8', errors='replace')

    def encode(self, message_begin=True, message_end=True):
        """
        Serialise the record.

        Args:
            message_begin (bool): Set the MB flag
            message_end (bool): Set the ME flag

        Returns:
            bytes: Encoded record
        """
        header = self.tnf & 0x07
        if message_begin:
            header |= FLAG_MB
        if message_end:
            header |= FLAG_ME
        if self.id:
            header |= FLAG_IL

        short_record = len(self.payload) < 256
        if short_record:
            header |= FLAG_SR
            encoded = bytes([header, len(self.type), len(self.payload)])
        else:
            encoded = bytes([header, len(self.type)]) + struct.pack('>I', len(self.payload))

        if self.id:
            encoded += bytes([len(self.id)])

        return encoded + self.type + self.id + self.payload

    def to_dict(self):
        """Inspection view of the record."""
        return {
            'record_type': self.record_type,
            'tnf': self.tnf,
            'type': self.type.decode('ascii', errors='replace'),
            'id': self.id.hex().upper(),
            'payload_hex': self.payload.hex().upper(),
            'text': self.text_value,
            'uri': self.uri_value,
        }

    def __eq__(self, other):
        if not isinstance(other, NdefRecord):
            return NotImplemented
        return (self.tnf, self.type, self.payload, self.id) == (other.tnf, other.type, other.payload, other.id)

    def __repr__(self):
        return f"NdefRecord(record_type={self.record_type!r}, payload={self.payload.hex().upper()!r})"


class NdefMessage:
    """An ordered list of NDEF records."""

    def __init__(self, records=None):
        self.records = list(records or [])

    def __iter__(self):
        return iter(self.records)

    def __len__(self):
        return len(self.records)

    def text_values(self):
        """Decoded text of every text record, in record order."""
        return [record.text_value for record in self.records if record.is_text]

    def encode(self):
        """
        Serialise the message to raw NDEF bytes.

        An empty message is encoded as a single empty record.
        """
        records = self.records or [NdefRecord(NDEF_TNF_EMPTY)]
        last = len(records) - 1
        return b''.join(
            record.encode(message_begin=(i == 0), message_end=(i == last))
            for i, record in enumerate(records)
        )

    def encode_tlv(self):
        """
        Wrap the message in a Type 2 tag NDEF TLV, terminated and padded to whole pages.

        Returns:
            bytes: Data to write starting at the first user page
        """
        ndef_message = self.encode()
        message_length = len(ndef_message)

        if message_length < 0xFF:
            tlv = bytes([TLV_NDEF, message_length])
        else:
            # 3-byte length format
            tlv = bytes([TLV_NDEF, 0xFF]) + message_length.to_bytes(2, byteorder='big')

        data = tlv + ndef_message + bytes([TLV_TERMINATOR])

        if len(data) % PAGE_SIZE:
            data += b'\x00' * (PAGE_SIZE - len(data) % PAGE_SIZE)

        return data

    def __repr__(self):
        return f"NdefMessage(records={self.records!r})"


def build_single_record_payload(value):
    """
    Build the message written to closet tags: exactly one UTF-8 text record.

    Writing this message replaces every record previously on the tag.

    Args:
        value (str): Tag identifier to store

    Returns:
        NdefMessage: Single-record message
    """
    return NdefMessage([NdefRecord.text(value)])


def _parse_records(data):
    """Parse raw NDEF record bytes into NdefRecord objects."""
    records = []
    offset = 0

    while offset < len(data):
        header = data[offset]
        offset += 1

        tnf = header & 0x07
        short_record = bool(header & FLAG_SR)
        has_id = bool(header & FLAG_IL)

        try:
            type_length = data[offset]
            offset += 1

            if short_record:
                payload_length = data[offset]
                offset += 1
            else:
                payload_length = struct.unpack('>I', bytes(data[offset:offset + 4]))[0]
                offset += 4

            id_length = 0
            if has_id:
                id_length = data[offset]
                offset += 1
        except (IndexError, struct.error):
            raise NFCReadError(f"Truncated NDEF record header at offset {offset}")

        end = offset + type_length + id_length + payload_length
        if end > len(data):
            raise NFCReadError(
                f"NDEF record overruns data ({end} > {len(data)} bytes)"
            )

        record_type = data[offset:offset + type_length]
        offset += type_length
        record_id = data[offset:offset + id_length]
        offset += id_length
        payload = data[offset:offset + payload_length]
        offset += payload_length

        records.append(NdefRecord(tnf, record_type, payload, record_id))

        if header & FLAG_ME:
            break

    return records


def parse_ndef_message(data):
    """
    Parse NDEF data read from a tag.

    Accepts either raw NDEF records or the TLV area of a Type 2 tag (NULL
    TLVs skipped, lock/memory control TLVs skipped, stops at the terminator).

    Args:
        data (bytes): Raw bytes read from the tag

    Returns:
        NdefMessage: Parsed message (empty if the tag holds no NDEF TLV)

    Raises:
        NFCReadError: If an NDEF TLV is present but malformed
    """
    if not data:
        return NdefMessage()

    data = bytes(data)

    # A record header always has MB set on the first record; TLV types never do
    if data[0] & FLAG_MB and data[0] not in (TLV_PROPRIETARY, TLV_TERMINATOR):
        return NdefMessage(_parse_records(data))

    offset = 0
    while offset < len(data):
        tlv_type = data[offset]
        offset += 1

        if tlv_type == TLV_NULL:
            continue
        if tlv_type == TLV_TERMINATOR:
            break

        if offset >= len(data):
            raise NFCReadError("Truncated TLV length")

        length = data[offset]
        offset += 1
        if length == 0xFF:
            if offset + 2 > len(data):
                raise NFCReadError("Truncated 3-byte TLV length")
            length = int.from_bytes(data[offset:offset + 2], byteorder='big')
            offset += 2

        value = data[offset:offset + length]
        offset += length

        if tlv_type == TLV_NDEF:
            if len(value) < length:
                raise NFCReadError(f"NDEF TLV truncated ({len(value)} of {length} bytes)")
            if length == 0:
                return NdefMessage()
            return NdefMessage(_parse_records(value))

        logger.debug(f"Skipping TLV type 0x{tlv_type:02X} ({length} bytes)")

    return NdefMessage()


def ndef_length_from_header(data):
    """
    Work out how many bytes of the TLV area need to be read.

    Args:
        data (bytes): First bytes of the user area (at least one page)

    Returns:
        int or None: Total bytes up to and including the NDEF TLV value,
                     None if no NDEF TLV header is found in the given bytes
    """
    offset = 0
    while offset < len(data):
        tlv_type = data[offset]
        if tlv_type == TLV_NULL:
            offset += 1
            continue
        if tlv_type == TLV_TERMINATOR or offset + 1 >= len(data):
            return None

        length = data[offset + 1]
        header_size = 2
        if length == 0xFF:
            if offset + 3 >= len(data):
                return None
            length = int.from_bytes(data[offset + 2:offset + 4], byteorder='big')
            header_size = 4

        if tlv_type == TLV_NDEF:
            return offset + header_size + length

        offset += header_size + length

    return None
