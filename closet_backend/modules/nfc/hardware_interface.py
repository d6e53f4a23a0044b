"""
hardware_interface.py - Event-driven NFC reader handles.

A reader handle is single-use: ``scan()`` starts listening, tag arrivals are
delivered to ``on_reading(event)``, hardware failures to
``on_reading_error(error)``, ``write(message)`` replaces the NDEF content of
the tag currently in the field, and ``stop()`` ends it. Callbacks run on the
reader's polling thread.

The PN532 implementation uses the Adafruit PN532 library over I2C.
"""

import logging
import threading
import time

from .tag_processor import (
    NdefMessage, PAGE_SIZE, format_uid, ndef_length_from_header, parse_ndef_message
)
from .exceptions import (
    NFCHardwareError, NFCUnsupportedError, NFCReadError, NFCWriteError,
    NFCNoTagError, NFCTagNotWritableError
)

# Create logger
logger = logging.getLogger(__name__)

# Type 2 tag layout
CAPABILITY_CONTAINER_PAGE = 3
FIRST_USER_PAGE = 4
CC_MAGIC = 0xE1


class TagReadEvent:
    """
    A tag arrived in the reader's field.

    Attributes:
        serial_number (bytes or str): Hardware UID, if the reader exposes one
        message (NdefMessage): NDEF content read from the tag
    """

    def __init__(self, serial_number=None, message=None):
        self.serial_number = serial_number
        self.message = message if message is not None else NdefMessage()

    @property
    def records(self):
        return self.message.records

    def __repr__(self):
        serial = format_uid(self.serial_number) if isinstance(self.serial_number, (bytes, bytearray)) else self.serial_number
        return f"TagReadEvent(serial_number={serial!r}, records={len(self.records)})"


class NFCReader:
    """
    Base class for reader handles.

    Subclasses implement ``scan``, ``stop`` and ``write`` and report tags
    through ``_emit_reading`` / ``_emit_error``.
    """

    def __init__(self):
        self.on_reading = None
        self.on_reading_error = None

    def scan(self):
        """Start listening for tags."""
        raise NotImplementedError

    def stop(self):
        """Stop listening and release the hardware. Safe to call more than once."""
        raise NotImplementedError

    def write(self, message):
        """Write an NdefMessage to the tag currently in the field, replacing its content."""
        raise NotImplementedError

    def _emit_reading(self, event):
        callback = self.on_reading
        if callback is not None:
            callback(event)

    def _emit_error(self, error):
        callback = self.on_reading_error
        if callback is not None:
            callback(error)


class PN532Reader(NFCReader):
    """
    PN532 reader handle (I2C HAT) for NTAG21x / Type 2 tags.

    Attributes:
        i2c_bus (int): I2C bus number (informational, board.SCL/SDA are used)
        i2c_address (int): I2C device address
        poll_interval (float): Passive target poll timeout in seconds
    """

    def __init__(self, i2c_bus=1, i2c_address=0x24, poll_interval=0.1):
        super().__init__()
        self.i2c_bus = i2c_bus
        self.i2c_address = i2c_address
        self.poll_interval = poll_interval
        self._pn532 = None
        self._i2c = None
        self._connected = False
        self._last_tag_uid = None
        self._io_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._poll_thread = None

    @property
    def connected(self):
        return self._connected

    def connect(self):
        """
        Establish connection to the NFC hardware.

        Raises:
            NFCUnsupportedError: If the driver libraries or board support are missing
            NFCHardwareError: If the reader does not answer
        """
        try:
            import board
            import busio
            from adafruit_pn532.i2c import PN532_I2C
        except (ImportError, NotImplementedError, RuntimeError) as e:
            # blinka raises NotImplementedError/RuntimeError on unsupported boards
            raise NFCUnsupportedError(f"PN532 driver not available on this host: {e}")

        with self._io_lock:
            try:
                self._i2c = busio.I2C(board.SCL, board.SDA)
                self._pn532 = PN532_I2C(self._i2c, address=self.i2c_address, debug=False)

                ic, ver, rev, support = self._pn532.firmware_version
                logger.info(f"Connected to PN532 NFC reader: IC={ic}, Version=v{ver}.{rev}, Support={support}")

                # Configure to read ISO14443A tags
                self._pn532.SAM_configuration()
                self._connected = True
            except Exception as e:
                self.disconnect()
                raise NFCHardwareError(f"Error connecting to NFC hardware on bus {self.i2c_bus}, address 0x{self.i2c_address:02X}: {e}")

    def disconnect(self):
        """Close connection to NFC hardware."""
        with self._io_lock:
            try:
                if self._i2c:
                    self._i2c.deinit()
                    logger.debug("Disconnected from NFC hardware")
            except Exception as e:
                logger.error(f"Error disconnecting from NFC hardware: {str(e)}")
            finally:
                self._pn532 = None
                self._i2c = None
                self._connected = False
                self._last_tag_uid = None

    def get_version(self):
        """
        Get firmware version from the NFC hardware.

        Returns:
            str: Version string or None if not connected
        """
        if not self._connected:
            return None
        with self._io_lock:
            try:
                ic, ver, rev, support = self._pn532.firmware_version
                return f"v{ver}.{rev}"
            except Exception as e:
                logger.error(f"Error getting NFC hardware version: {str(e)}")
                return None

    def scan(self):
        """Connect if needed and start the polling thread."""
        if self._poll_thread is not None and self._poll_thread.is_alive():
            logger.debug("Reader already scanning")
            return

        if not self._connected:
            self.connect()

        self._stop_event.clear()
        self._poll_thread = threading.Thread(target=self._poll_loop, name="pn532-poll", daemon=True)
        self._poll_thread.start()
        logger.debug("NFC reader scanning")

    def stop(self):
        """
        Stop polling and release the bus.

        When called from a callback (i.e. on the polling thread) the loop exits
        as soon as the callback returns; otherwise wait for it first.
        """
        self._stop_event.set()
        thread = self._poll_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self.poll_interval * 5))
            if thread.is_alive():
                logger.warning("NFC polling thread did not stop in time")
            self._poll_thread = None
        self.disconnect()

    def _poll_loop(self):
        logger.debug(f"Polling thread started (interval {self.poll_interval}s)")
        try:
            while not self._stop_event.is_set():
                try:
                    with self._io_lock:
                        if not self._connected:
                            break
                        uid = self._pn532.read_passive_target(timeout=self.poll_interval)
                except Exception as e:
                    if self._stop_event.is_set():
                        break
                    logger.error(f"Error polling for NFC tag: {e}")
                    self._emit_error(NFCReadError(str(e)))
                    time.sleep(self.poll_interval)
                    continue

                if uid is None:
                    self._last_tag_uid = None
                    continue

                uid = bytes(uid)
                if uid == self._last_tag_uid:
                    # Same tag still resting on the reader
                    continue
                self._last_tag_uid = uid
                logger.debug(f"Tag detected with UID: {format_uid(uid)}")

                try:
                    message = self.read_message()
                except NFCNoTagError:
                    self._last_tag_uid = None
                    continue
                except NFCReadError as e:
                    logger.warning(f"Tag {format_uid(uid)} has no readable NDEF data: {e}")
                    message = NdefMessage()

                self._emit_reading(TagReadEvent(uid, message))
        finally:
            logger.debug("Polling thread finished")

    def _read_page(self, page):
        data = self._pn532.ntag2xx_read_block(page)
        if data is None:
            raise NFCReadError(f"Failed to read page {page}")
        return bytes(data[:PAGE_SIZE])

    def _read_capability_container(self):
        cc = self._read_page(CAPABILITY_CONTAINER_PAGE)
        if cc[0] != CC_MAGIC:
            raise NFCTagNotWritableError(f"Tag is not NDEF formatted (CC={cc.hex().upper()})")
        return cc

    def read_message(self):
        """
        Read and parse the NDEF TLV area of the tag in the field.

        Returns:
            NdefMessage: Parsed message

        Raises:
            NFCNoTagError: If no tag is present
            NFCReadError: If reading or parsing fails
        """
        with self._io_lock:
            if not self._connected:
                raise NFCHardwareError("Not connected to NFC hardware")
            if not self._last_tag_uid:
                raise NFCNoTagError("No NFC tag detected")

            try:
                capacity = self._read_capability_container()[2] * 8
            except NFCTagNotWritableError as e:
                raise NFCReadError(str(e))

            max_pages = capacity // PAGE_SIZE
            data = b''
            for i in range(min(4, max_pages)):
                data += self._read_page(FIRST_USER_PAGE + i)

            needed = ndef_length_from_header(data)
            if needed is None:
                return parse_ndef_message(data)

            pages_needed = min((needed + PAGE_SIZE - 1) // PAGE_SIZE, max_pages)
            for i in range(len(data) // PAGE_SIZE, pages_needed):
                data += self._read_page(FIRST_USER_PAGE + i)

            return parse_ndef_message(data)

    def write(self, message):
        """
        Overwrite the tag's NDEF area with ``message``.

        Raises:
            NFCNoTagError: If no tag is present
            NFCTagNotWritableError: If the tag is locked, unformatted or too small
            NFCWriteError: If a page write fails
        """
        data = message.encode_tlv()

        with self._io_lock:
            if not self._connected:
                raise NFCHardwareError("Not connected to NFC hardware")
            if not self._last_tag_uid:
                raise NFCNoTagError("No NFC tag detected")

            cc = self._read_capability_container()
            if cc[3] & 0x0F:
                raise NFCTagNotWritableError("Tag is write-protected")
            capacity = cc[2] * 8
            if len(data) > capacity:
                raise NFCTagNotWritableError(f"Message needs {len(data)} bytes, tag holds {capacity}")

            for i in range(len(data) // PAGE_SIZE):
                page = FIRST_USER_PAGE + i
                chunk = data[i * PAGE_SIZE:(i + 1) * PAGE_SIZE]
                try:
                    ok = self._pn532.ntag2xx_write_block(page, chunk)
                except Exception as e:
                    raise NFCWriteError(f"Error writing page {page}: {e}")
                if not ok:
                    raise NFCWriteError(f"Failed to write page {page}")

            logger.info(f"Wrote {len(data)} bytes of NDEF data to tag {format_uid(self._last_tag_uid)}")
