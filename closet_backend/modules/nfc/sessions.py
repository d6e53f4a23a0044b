"""
sessions.py - Single-use NFC read and write sessions.

A session owns one reader handle for its lifetime and resolves exactly once:
the first of {tag handled, hardware error, timeout} wins. Every resolution
path goes through ``_resolve``, which does a lock-guarded compare-and-set out
of a non-terminal state and then stops the reader, detaches its callbacks,
cancels the timer and delivers the outcome, in that order. Events that lose
the race are logged and dropped.
"""

import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from enum import Enum

from .tag_processor import (
    build_single_record_payload, derive_from_hardware_serial, generate_new_identifier,
    is_valid_identifier, normalize
)
from .exceptions import NFCSessionError, NFCUnsupportedError

# Create logger
logger = logging.getLogger(__name__)

DEFAULT_READ_TIMEOUT = 30.0
DEFAULT_VERIFY_TIMEOUT = 5.0
DEFAULT_SETTLE_DELAY = 1.5


class SessionState(Enum):
    IDLE = 'idle'
    SCANNING = 'scanning'
    PROCESSING = 'processing'
    WRITING = 'writing'
    VERIFYING = 'verifying'
    RESOLVED_SUCCESS = 'resolved_success'
    RESOLVED_FAILURE = 'resolved_failure'


TERMINAL_STATES = (SessionState.RESOLVED_SUCCESS, SessionState.RESOLVED_FAILURE)


class SourceKind(Enum):
    """Where a scanned identifier came from."""
    WRITTEN_TEXT_1 = 'written_text_1'
    WRITTEN_TEXT_2 = 'written_text_2'
    HARDWARE_SERIAL = 'hardware_serial'
    HEX_FALLBACK = 'hex_fallback'
    GENERATED = 'generated'


class ErrorKind(Enum):
    UNSUPPORTED_ENVIRONMENT = 'unsupported_environment'
    NO_USABLE_IDENTIFIER = 'no_usable_identifier'
    WRITE_FAILED = 'write_failed'
    VERIFICATION_FAILED = 'verification_failed'
    ALREADY_ASSOCIATED = 'already_associated'
    HARDWARE_READ_ERROR = 'hardware_read_error'
    TIMEOUT = 'timeout'
    UNEXPECTED_EXCEPTION = 'unexpected_exception'
    CANCELLED = 'cancelled'


class ScanOutcome:
    """Result of one read session."""

    def __init__(self, success, tag_id=None, source_kind=None, raw_records=None,
                 error_kind=None, message=None):
        self.success = success
        self.tag_id = tag_id
        self.source_kind = source_kind
        self.raw_records = list(raw_records or [])
        self.error_kind = error_kind
        self.message = message

    @classmethod
    def succeeded(cls, tag_id, source_kind, raw_records=None):
        return cls(True, tag_id=tag_id, source_kind=source_kind, raw_records=raw_records)

    @classmethod
    def failed(cls, error_kind, message, raw_records=None):
        return cls(False, error_kind=error_kind, message=message, raw_records=raw_records)

    def to_dict(self):
        if self.success:
            return {
                'success': True,
                'tag_id': self.tag_id,
                'source_kind': self.source_kind.value,
                'raw_records': [record.to_dict() for record in self.raw_records],
            }
        return {
            'success': False,
            'error_kind': self.error_kind.value,
            'message': self.message,
        }

    def __repr__(self):
        if self.success:
            return f"ScanOutcome(success=True, tag_id={self.tag_id!r}, source_kind={self.source_kind.value})"
        return f"ScanOutcome(success=False, error_kind={self.error_kind.value}, message={self.message!r})"


class WriteOutcome:
    """Result of one write session."""

    def __init__(self, success, tag_id=None, error_kind=None, message=None,
                 expected=None, observed=None):
        self.success = success
        self.tag_id = tag_id
        self.error_kind = error_kind
        self.message = message
        self.expected = expected
        self.observed = observed

    @classmethod
    def succeeded(cls, tag_id):
        return cls(True, tag_id=tag_id, expected=tag_id, observed=tag_id)

    @classmethod
    def failed(cls, error_kind, message, expected=None, observed=None):
        return cls(False, error_kind=error_kind, message=message, expected=expected, observed=observed)

    def to_dict(self):
        if self.success:
            return {'success': True, 'tag_id': self.tag_id}
        result = {
            'success': False,
            'error_kind': self.error_kind.value,
            'message': self.message,
        }
        if self.error_kind == ErrorKind.VERIFICATION_FAILED:
            result['expected'] = self.expected
            result['observed'] = self.observed
        return result

    def __repr__(self):
        if self.success:
            return f"WriteOutcome(success=True, tag_id={self.tag_id!r})"
        return f"WriteOutcome(success=False, error_kind={self.error_kind.value}, message={self.message!r})"


class IdentifierSelection:
    """Decision of ``select_identifier``: an identifier and its source, or nothing."""

    def __init__(self, tag_id=None, source_kind=None):
        self.tag_id = tag_id
        self.source_kind = source_kind

    def __bool__(self):
        return self.tag_id is not None

    def __repr__(self):
        kind = self.source_kind.value if self.source_kind else None
        return f"IdentifierSelection(tag_id={self.tag_id!r}, source_kind={kind})"


def select_identifier(event, is_taken=None):
    """
    Pick the identifier a tag event stands for.

    Priority: first valid text record; the second valid text record when the
    first is taken by another entity; the hardware serial; the first
    non-text record whose payload hex is a valid identifier.

    Args:
        event (TagReadEvent): Tag event
        is_taken (callable, optional): ``is_taken(tag_id) -> bool``, True when
            the identifier belongs to an entity other than the intended one

    Returns:
        IdentifierSelection: Falsy when nothing usable was found
    """
    texts = []
    for record in event.records:
        if record.is_text:
            value = normalize(record.text_value)
            if is_valid_identifier(value):
                texts.append(value)

    if texts:
        if len(texts) > 1 and is_taken is not None and is_taken(texts[0]):
            logger.info(f"Tag ID {texts[0]} belongs to another entity, using second text record {texts[1]}")
            return IdentifierSelection(texts[1], SourceKind.WRITTEN_TEXT_2)
        return IdentifierSelection(texts[0], SourceKind.WRITTEN_TEXT_1)

    serial_id = derive_from_hardware_serial(event.serial_number)
    if serial_id:
        return IdentifierSelection(serial_id, SourceKind.HARDWARE_SERIAL)

    for record in event.records:
        if record.is_text or not record.payload:
            continue
        hex_value = record.payload.hex().upper()
        if is_valid_identifier(hex_value):
            return IdentifierSelection(hex_value, SourceKind.HEX_FALLBACK)

    return IdentifierSelection()


def read_tag_once(reader_factory, timeout=DEFAULT_VERIFY_TIMEOUT):
    """
    Open a short-lived reader and return the first tag event it sees.

    Error events are logged and ignored; the reader is always stopped and
    detached before returning.

    Args:
        reader_factory (callable): Returns a new reader handle
        timeout (float): Seconds to wait for a tag

    Returns:
        TagReadEvent or None: The event, or None when no tag was seen in time
    """
    received = Future()

    def on_reading(event):
        if not received.done():
            received.set_result(event)

    def on_reading_error(error):
        logger.debug(f"Ignoring reader error during read-back: {error}")

    reader = reader_factory()
    reader.on_reading = on_reading
    reader.on_reading_error = on_reading_error
    try:
        reader.scan()
        return received.result(timeout=timeout)
    except FutureTimeoutError:
        return None
    finally:
        try:
            reader.stop()
        except Exception as e:
            logger.warning(f"Error stopping read-back reader: {e}")
        reader.on_reading = None
        reader.on_reading_error = None


class _Session:
    """Shared lifecycle of read and write sessions."""

    outcome_class = None

    def __init__(self, reader_factory, timeout, timer_factory=None):
        self._reader_factory = reader_factory
        self.timeout = timeout
        self._timer_factory = timer_factory or threading.Timer
        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._reader = None
        self._timer = None
        self._outcome = Future()

    @property
    def state(self):
        return self._state

    @property
    def is_resolved(self):
        return self._state in TERMINAL_STATES

    @property
    def outcome(self):
        """The delivered outcome, or None while the session is still running."""
        if not self._outcome.done():
            return None
        return self._outcome.result()

    def _transition(self, expected, new_state):
        """Move from ``expected`` to ``new_state``; False if the state has changed meanwhile."""
        with self._state_lock:
            if self._state is not expected:
                return False
            self._state = new_state
            return True

    def _resolve(self, outcome, source, allowed_states=None):
        """
        Deliver ``outcome`` if the session is still open.

        Args:
            outcome: ScanOutcome or WriteOutcome
            source (str): Name of the resolution path, for logging
            allowed_states (tuple, optional): Only resolve from these states

        Returns:
            bool: True if this call resolved the session
        """
        with self._state_lock:
            if self._state in TERMINAL_STATES or (allowed_states and self._state not in allowed_states):
                logger.debug(f"Dropping late {source} event in state {self._state.value}")
                return False
            self._state = SessionState.RESOLVED_SUCCESS if outcome.success else SessionState.RESOLVED_FAILURE

        self._release_reader()
        self._cancel_timer()
        logger.debug(f"Session resolved by {source}: {outcome!r}")
        self._outcome.set_result(outcome)
        return True

    def _release_reader(self):
        reader, self._reader = self._reader, None
        if reader is None:
            return
        try:
            reader.stop()
        except Exception as e:
            logger.warning(f"Error stopping NFC reader: {e}")
        reader.on_reading = None
        reader.on_reading_error = None

    def _cancel_timer(self):
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def start(self):
        """Open the reader, attach callbacks, start the timeout and begin scanning."""
        if not self._transition(SessionState.IDLE, SessionState.SCANNING):
            raise NFCSessionError(f"Session already started (state {self._state.value})")

        try:
            self._reader = self._reader_factory()
            self._reader.on_reading = self._handle_reading
            self._reader.on_reading_error = self._handle_reading_error

            self._timer = self._timer_factory(self.timeout, self._handle_timeout)
            self._timer.daemon = True
            self._timer.start()

            self._reader.scan()
        except NFCUnsupportedError as e:
            self._resolve(self._failure(ErrorKind.UNSUPPORTED_ENVIRONMENT, str(e)), 'start')
        except Exception as e:
            logger.error(f"Error starting NFC reader: {e}")
            self._resolve(self._failure(ErrorKind.UNSUPPORTED_ENVIRONMENT, f"NFC reader unavailable: {e}"), 'start')

    def wait(self, timeout=None):
        """
        Block until the session resolves.

        Returns:
            The outcome, or None if ``timeout`` elapsed first
        """
        try:
            return self._outcome.result(timeout=timeout)
        except FutureTimeoutError:
            return None

    def run(self):
        """Start the session and block until it resolves."""
        self.start()
        return self.wait()

    def cancel(self):
        """Resolve with a cancellation failure if still open."""
        return self._resolve(self._failure(ErrorKind.CANCELLED, "Operation cancelled"), 'cancel')

    def _failure(self, error_kind, message):
        return self.outcome_class.failed(error_kind, message)

    def _handle_reading(self, event):
        raise NotImplementedError

    def _handle_reading_error(self, error):
        self._resolve(
            self._failure(ErrorKind.HARDWARE_READ_ERROR, f"Error reading NFC tag: {error}"),
            'reading error',
            allowed_states=(SessionState.SCANNING,)
        )

    def _handle_timeout(self):
        self._resolve(
            self._failure(ErrorKind.TIMEOUT, f"No NFC tag detected within {self.timeout:g} seconds"),
            'timeout',
            allowed_states=(SessionState.SCANNING,)
        )


class ReadSession(_Session):
    """
    Scan one tag and work out which identifier it carries.

    With the existence check enabled this is the "register a tag" flow: a
    tag with nothing usable on it gets a freshly generated identifier written
    to it, and an identifier already bound to another entity is refused.
    """

    outcome_class = ScanOutcome

    def __init__(self, reader_factory, resolver=None, skip_existence_check=False,
                 intended_entity=None, timeout=DEFAULT_READ_TIMEOUT, timer_factory=None,
                 id_generator=None):
        super().__init__(reader_factory, timeout, timer_factory)
        self.resolver = resolver
        self.skip_existence_check = skip_existence_check
        self.intended_entity = intended_entity
        self._id_generator = id_generator or generate_new_identifier
        self._lookups = {}

    def _lookup(self, tag_id):
        """Existence check result for ``tag_id``; resolver failures count as free."""
        if self.resolver is None:
            return {'exists': False}
        if tag_id not in self._lookups:
            try:
                self._lookups[tag_id] = self.resolver.check_tag_exists(tag_id) or {'exists': False}
            except Exception as e:
                logger.warning(f"Existence check failed for tag {tag_id}, treating as free: {e}")
                self._lookups[tag_id] = {'exists': False}
        return self._lookups[tag_id]

    def _owned_by_other(self, tag_id):
        result = self._lookup(tag_id)
        if not result.get('exists'):
            return False
        if self.intended_entity is None:
            return True
        entity_type, entity_id = self.intended_entity
        return (result.get('entity_type'), str(result.get('entity_id'))) != (entity_type, str(entity_id))

    def _handle_reading(self, event):
        with self._state_lock:
            if self._state is not SessionState.SCANNING:
                logger.debug("Ignoring tag event, session no longer scanning")
                return
            self._state = SessionState.PROCESSING

        try:
            outcome = self._evaluate(event)
        except Exception as e:
            logger.exception("Error processing NFC tag")
            outcome = ScanOutcome.failed(
                ErrorKind.UNEXPECTED_EXCEPTION, f"Error processing NFC tag: {e}", event.records
            )
        self._resolve(outcome, 'reading')

    def _evaluate(self, event):
        records = event.records
        is_taken = None if self.skip_existence_check else self._owned_by_other
        selection = select_identifier(event, is_taken)

        if not selection:
            if self.skip_existence_check:
                return ScanOutcome.failed(
                    ErrorKind.NO_USABLE_IDENTIFIER, "No valid NFC tag ID found", records
                )

            tag_id = self._id_generator()
            logger.info(f"No usable identifier on tag, writing new ID {tag_id}")
            try:
                self._reader.write(build_single_record_payload(tag_id))
            except Exception as e:
                logger.error(f"Failed to write generated tag ID: {e}")
                return ScanOutcome.failed(ErrorKind.WRITE_FAILED, f"Failed to write new ID to tag: {e}", records)
            selection = IdentifierSelection(tag_id, SourceKind.GENERATED)

        if not self.skip_existence_check and self._owned_by_other(selection.tag_id):
            owner = self._lookup(selection.tag_id)
            return ScanOutcome.failed(
                ErrorKind.ALREADY_ASSOCIATED,
                f'Tag {selection.tag_id} is already associated with '
                f'{owner.get("entity_type")} "{owner.get("entity_name")}"',
                records
            )

        logger.info(f"Read tag ID {selection.tag_id} ({selection.source_kind.value})")
        return ScanOutcome.succeeded(selection.tag_id, selection.source_kind, records)


class WriteSession(_Session):
    """
    Write one identifier to a tag and confirm it by reading it back.

    The first tag event triggers the write; the write reader is then stopped,
    the tag given ``settle_delay`` seconds, and a fresh reader opened for up
    to ``verify_timeout`` seconds to read the value back.
    """

    outcome_class = WriteOutcome

    def __init__(self, reader_factory, tag_id, timeout=DEFAULT_READ_TIMEOUT,
                 verify_timeout=DEFAULT_VERIFY_TIMEOUT, settle_delay=DEFAULT_SETTLE_DELAY,
                 timer_factory=None, sleep=time.sleep):
        super().__init__(reader_factory, timeout, timer_factory)
        self.tag_id = tag_id
        self.verify_timeout = verify_timeout
        self.settle_delay = settle_delay
        self._sleep = sleep
        self._has_written = False

    def _failure(self, error_kind, message):
        return WriteOutcome.failed(error_kind, message, expected=self.tag_id)

    def _handle_reading(self, event):
        with self._state_lock:
            if self._has_written or self._state is not SessionState.SCANNING:
                logger.debug("Ignoring tag event, write already attempted")
                return
            self._has_written = True
            self._state = SessionState.WRITING

        try:
            outcome = self._write_and_verify()
        except Exception as e:
            logger.exception("Error during NFC write")
            outcome = self._failure(ErrorKind.UNEXPECTED_EXCEPTION, f"Error writing NFC tag: {e}")
        self._resolve(outcome, 'write')

    def _write_and_verify(self):
        try:
            self._reader.write(build_single_record_payload(self.tag_id))
        except Exception as e:
            logger.error(f"Error writing to NFC tag: {e}")
            return self._failure(ErrorKind.WRITE_FAILED, f"Failed to write to NFC tag: {e}")

        # The write reader must be gone before the verification reader opens
        self._release_reader()
        if not self._transition(SessionState.WRITING, SessionState.VERIFYING):
            return None

        self._sleep(self.settle_delay)

        event = read_tag_once(self._reader_factory, self.verify_timeout)
        texts = event.message.text_values() if event is not None else []
        observed = texts[0] if texts else None

        if observed is not None and (normalize(observed) == normalize(self.tag_id) or observed == self.tag_id):
            logger.info(f"Verified tag ID {self.tag_id} on tag")
            return WriteOutcome.succeeded(self.tag_id)

        shown = observed if observed is not None else 'nothing'
        logger.warning(f"Tag verification failed: expected {self.tag_id}, read {shown}")
        return WriteOutcome.failed(
            ErrorKind.VERIFICATION_FAILED,
            f"Verification failed: expected {self.tag_id} but read {shown}",
            expected=self.tag_id,
            observed=observed
        )

    def _resolve(self, outcome, source, allowed_states=None):
        if outcome is None:
            return False
        return super()._resolve(outcome, source, allowed_states)
