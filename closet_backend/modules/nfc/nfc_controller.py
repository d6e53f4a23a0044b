"""
nfc_controller.py - Main NFC controller interface for other application modules.

Wraps the read and write sessions behind the calls the rest of the
application uses. Only one session runs at a time: the hardware allows a
single active reader, so sessions queue on a lock.
"""

import importlib.util
import logging
import threading

from .hardware_interface import PN532Reader
from .sessions import (
    ReadSession, WriteSession, WriteOutcome, ErrorKind,
    DEFAULT_READ_TIMEOUT, DEFAULT_VERIFY_TIMEOUT, DEFAULT_SETTLE_DELAY
)
from .tag_processor import generate_new_identifier, is_valid_identifier, normalize
from .exceptions import NFCError
from ...utils.event_bus import event_bus, EventNames
from ...utils.system_utils import get_platform_info
from ...utils.validators import validate_entity_type

# Configure logger
logger = logging.getLogger(__name__)

# Controller state (singleton pattern)
_reader_factory = None
_resolver = None
_timer_factory = None
_settings = {}
_initialized = False
_state_lock = threading.Lock()
_session_lock = threading.Lock()
_active_session = None

DEFAULT_COOLDOWN = 1.0


def initialize(i2c_bus=1, i2c_address=0x24, poll_interval=0.1, reader_factory=None,
               resolver=None, timer_factory=None, read_timeout=DEFAULT_READ_TIMEOUT,
               verify_timeout=DEFAULT_VERIFY_TIMEOUT, write_settle_delay=DEFAULT_SETTLE_DELAY,
               continuous_cooldown=DEFAULT_COOLDOWN, probe=True):
    """
    Initialize the NFC controller.

    Args:
        i2c_bus (int): I2C bus number (usually 1 on Raspberry Pi)
        i2c_address (int): I2C device address of the NFC HAT
        poll_interval (float): Reader poll interval in seconds
        reader_factory (callable, optional): Returns a new reader handle;
            defaults to a PN532Reader on the given bus
        resolver (optional): Object with ``check_tag_exists``; defaults to the database manager
        timer_factory (callable, optional): Session timer factory (threading.Timer)
        read_timeout (float): Seconds a session waits for a tag
        verify_timeout (float): Seconds the post-write read-back waits
        write_settle_delay (float): Seconds between write and read-back
        continuous_cooldown (float): Seconds between continuous scans
        probe (bool): Check that the reader answers

    Returns:
        bool: True if the reader is usable, False otherwise (the controller
              still initializes and sessions report the environment as unsupported)
    """
    global _reader_factory, _resolver, _timer_factory, _settings, _initialized

    with _state_lock:
        if reader_factory is None:
            def reader_factory():
                return PN532Reader(i2c_bus, i2c_address, poll_interval)
            custom_reader = False
        else:
            custom_reader = True

        if resolver is None:
            from ..database import db_manager
            resolver = db_manager

        _reader_factory = reader_factory
        _resolver = resolver
        _timer_factory = timer_factory
        _settings = {
            'i2c_bus': i2c_bus,
            'i2c_address': i2c_address,
            'read_timeout': read_timeout,
            'verify_timeout': verify_timeout,
            'write_settle_delay': write_settle_delay,
            'continuous_cooldown': continuous_cooldown,
            'custom_reader': custom_reader,
        }
        _initialized = True

    if not probe or custom_reader:
        logger.info("NFC controller initialized")
        return True

    if check_nfc_support():
        logger.info(f"NFC controller initialized on bus {i2c_bus}, address 0x{i2c_address:02X}")
        return True

    logger.warning("NFC controller initialized but no reader is available")
    return False


def shutdown():
    """
    Cancel any running session and reset the controller.

    Returns:
        bool: True if shutdown successful
    """
    global _reader_factory, _resolver, _initialized

    cancel()
    with _state_lock:
        _reader_factory = None
        _resolver = None
        _initialized = False
    logger.info("NFC controller shut down")
    return True


def _binding_store():
    """The resolver sessions use, or the database manager before initialization."""
    if _resolver is not None:
        return _resolver
    from ..database import db_manager
    return db_manager


def _driver_available():
    return importlib.util.find_spec('adafruit_pn532') is not None


def get_nfc_support_info():
    """
    Get information about NFC support on this host.

    Returns:
        dict: Support information (driver, platform, connection, firmware)
    """
    i2c_bus = _settings.get('i2c_bus', 1)
    i2c_address = _settings.get('i2c_address', 0x24)
    info = {
        'initialized': _initialized,
        'supported': False,
        'driver_available': _driver_available(),
        'platform': get_platform_info(i2c_bus),
        'i2c_bus': i2c_bus,
        'i2c_address': f"0x{i2c_address:02X}",
        'connected': False,
        'firmware_version': None,
        'busy': _active_session is not None,
    }

    if not _initialized:
        info['error'] = "NFC controller not initialized"
        return info

    if _settings.get('custom_reader'):
        info['supported'] = True
        info['connected'] = True
        return info

    if info['busy']:
        # The active session owns the reader, so it is known to work
        info['supported'] = True
        info['connected'] = True
        return info

    if not info['driver_available']:
        info['error'] = "adafruit-circuitpython-pn532 is not installed"
        return info

    if not _session_lock.acquire(blocking=False):
        info['supported'] = True
        info['busy'] = True
        return info

    try:
        reader = _reader_factory()
        reader.connect()
        try:
            info['firmware_version'] = reader.get_version() or "Unknown"
            info['connected'] = True
            info['supported'] = True
        finally:
            reader.disconnect()
    except NFCError as e:
        logger.warning(f"NFC reader probe failed: {e}")
        info['error'] = str(e)
    finally:
        _session_lock.release()

    return info


def check_nfc_support():
    """
    Check whether NFC reading is possible on this host.

    Returns:
        bool: True if a reader is available
    """
    return get_nfc_support_info()['supported']


def _run_session(session):
    """Run a session once the reader is free and return its outcome."""
    global _active_session

    if not _initialized:
        return session.outcome_class.failed(
            ErrorKind.UNSUPPORTED_ENVIRONMENT, "NFC controller not initialized"
        )

    with _session_lock:
        with _state_lock:
            _active_session = session
        try:
            return session.run()
        finally:
            with _state_lock:
                _active_session = None


def read_tag(skip_existence_check=False, intended_entity=None, timeout=None):
    """
    Scan one tag and return the identifier it carries.

    Args:
        skip_existence_check (bool): Only look the tag up; do not refuse bound
            tags and do not write an identifier to blank tags
        intended_entity (tuple, optional): ``(entity_type, entity_id)`` the tag
            is meant for; a tag already bound to it is not a duplicate
        timeout (float, optional): Override the session timeout

    Returns:
        ScanOutcome: Exactly one outcome
    """
    session = ReadSession(
        _reader_factory,
        resolver=_resolver,
        skip_existence_check=skip_existence_check,
        intended_entity=intended_entity,
        timeout=timeout or _settings.get('read_timeout', DEFAULT_READ_TIMEOUT),
        timer_factory=_timer_factory
    )
    outcome = _run_session(session)
    event_bus.emit(EventNames.TAG_SCANNED, outcome=outcome)
    return outcome


def _invalid_identifier_outcome(tag_id):
    logger.warning(f"Refusing to write invalid tag ID {tag_id!r}")
    return WriteOutcome.failed(ErrorKind.WRITE_FAILED, f"Invalid tag ID: {tag_id!r}", expected=tag_id)


def write_tag(tag_id, timeout=None):
    """
    Write an identifier to the next tag presented and verify it.

    Args:
        tag_id (str): Identifier to write
        timeout (float, optional): Override the session timeout

    Returns:
        WriteOutcome: Exactly one outcome. An identifier that is not 8+ hex
        characters fails with ``write_failed`` before any reader is opened.
    """
    value = normalize(tag_id)
    if not is_valid_identifier(value):
        return _invalid_identifier_outcome(tag_id)

    session = WriteSession(
        _reader_factory,
        value,
        timeout=timeout or _settings.get('read_timeout', DEFAULT_READ_TIMEOUT),
        verify_timeout=_settings.get('verify_timeout', DEFAULT_VERIFY_TIMEOUT),
        settle_delay=_settings.get('write_settle_delay', DEFAULT_SETTLE_DELAY),
        timer_factory=_timer_factory
    )
    outcome = _run_session(session)
    event_bus.emit(EventNames.TAG_WRITTEN, outcome=outcome)
    return outcome


def cancel():
    """
    Cancel the active session, stopping its reader.

    Returns:
        bool: True if a session was cancelled
    """
    with _state_lock:
        session = _active_session
    if session is None:
        return False
    cancelled = session.cancel()
    if cancelled:
        logger.info("NFC operation cancelled")
    return cancelled


def _active(session_class):
    session = _active_session
    return isinstance(session, session_class) and not session.is_resolved


def is_reading():
    return _active(ReadSession)


def is_writing():
    return _active(WriteSession)


def continuous_scan(callback, exit_event=None, skip_existence_check=True, cooldown=None):
    """
    Run read sessions back to back until ``exit_event`` is set.

    Args:
        callback (function): Called with each ScanOutcome
        exit_event (threading.Event, optional): Event to signal when to stop
        skip_existence_check (bool): Passed to every read session
        cooldown (float, optional): Seconds to wait after each outcome

    Note:
        This function runs in a loop and is typically called in a separate thread.
    """
    if exit_event is None:
        exit_event = threading.Event()
    if cooldown is None:
        cooldown = _settings.get('continuous_cooldown', DEFAULT_COOLDOWN)

    logger.info(f"Starting continuous scan with cooldown {cooldown}s")

    try:
        while not exit_event.is_set():
            outcome = read_tag(skip_existence_check=skip_existence_check)

            if outcome.error_kind == ErrorKind.UNSUPPORTED_ENVIRONMENT:
                logger.error(f"NFC unavailable, stopping continuous scan: {outcome.message}")
                return

            if outcome.error_kind != ErrorKind.CANCELLED:
                try:
                    callback(outcome)
                except Exception as e:
                    logger.error(f"Error in tag scan callback: {e}")

            # Give the hardware time to release the tag before the next session
            exit_event.wait(cooldown)
    finally:
        logger.info("Continuous scan stopped")


def inspect_tag(timeout=None):
    """
    Scan a tag without the existence check and describe what is on it.

    Returns:
        dict: ``outcome``, ``records`` (per-record dicts), ``selected_source``
              and ``association`` (current binding or None)
    """
    outcome = read_tag(skip_existence_check=True, timeout=timeout)

    association = None
    store = _binding_store()
    if outcome.success and hasattr(store, 'find_entity_by_nfc_tag'):
        try:
            association = store.find_entity_by_nfc_tag(outcome.tag_id)
        except Exception as e:
            logger.warning(f"Could not look up binding for tag {outcome.tag_id}: {e}")

    return {
        'outcome': outcome.to_dict(),
        'records': [record.to_dict() for record in outcome.raw_records],
        'selected_source': outcome.source_kind.value if outcome.success else None,
        'association': association,
    }


def release_tag(entity_type, entity_id):
    """
    Unbind whatever tag the entity currently holds.

    Returns:
        bool: True if a binding was removed
    """
    validate_entity_type(entity_type)
    released = _binding_store().remove_entity_nfc_tag(entity_type, entity_id)
    if released:
        logger.info(f"Released NFC tag from {entity_type} {entity_id}")
        event_bus.emit(EventNames.TAG_RELEASED, entity_type=entity_type, entity_id=entity_id)
    return released


def rewrite_tag(tag_id=None, release_from=None, timeout=None):
    """
    Write a fresh identifier to a tag, optionally releasing an entity's binding first.

    Args:
        tag_id (str, optional): Identifier to write; generated when omitted
        release_from (tuple, optional): ``(entity_type, entity_id)`` to unbind first
        timeout (float, optional): Override the session timeout

    Returns:
        WriteOutcome: Exactly one outcome
    """
    if tag_id and not is_valid_identifier(normalize(tag_id)):
        return _invalid_identifier_outcome(tag_id)

    if release_from is not None:
        release_tag(*release_from)

    if not tag_id:
        tag_id = generate_new_identifier()
        logger.info(f"Generated new tag ID {tag_id}")

    return write_tag(tag_id, timeout=timeout)
