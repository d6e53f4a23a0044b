#!/usr/bin/env python3
"""
Test script for the NFC module.

The hardware is replaced by scripted fake readers and a timer that only fires
when told to, so every session path runs synchronously.
"""

import threading
import unittest

from closet_backend.modules.nfc import nfc_controller
from closet_backend.modules.nfc.exceptions import (
    NFCReadError, NFCSessionError, NFCUnsupportedError, NFCWriteError
)
from closet_backend.modules.nfc.hardware_interface import NFCReader, TagReadEvent
from closet_backend.modules.nfc.sessions import (
    ReadSession, WriteSession, SessionState, SourceKind, ErrorKind, select_identifier
)
from closet_backend.modules.nfc.tag_processor import (
    NdefMessage, NdefRecord, NDEF_TNF_MIME_MEDIA, build_single_record_payload,
    decode_text_record, derive_from_hardware_serial, encode_text_record,
    generate_new_identifier, is_serial_identifier, is_valid_identifier, ndef_length_from_header,
    normalize, parse_ndef_message
)
from closet_backend.utils.event_bus import event_bus, EventNames
from closet_backend.utils.exceptions import ValidationError


def text_event(*texts, serial=None):
    """Tag event carrying one text record per value."""
    return TagReadEvent(serial, NdefMessage([NdefRecord.text(t) for t in texts]))


class FakeTag:
    """A physical tag: whatever was last written is what the next reader sees."""

    def __init__(self, message=None, serial=None):
        self.message = message or NdefMessage()
        self.serial = serial

    def event(self):
        return TagReadEvent(self.serial, NdefMessage(list(self.message.records)))


class FakeReader(NFCReader):
    """Scripted reader handle."""

    def __init__(self, tag=None, auto_present=False, write_error=None, scan_error=None,
                 error_on_stop=False, log=None, name='reader'):
        super().__init__()
        self.tag = tag
        self.auto_present = auto_present
        self.write_error = write_error
        self.scan_error = scan_error
        self.error_on_stop = error_on_stop
        self.log = log if log is not None else []
        self.name = name
        self.written = []
        self.stop_count = 0
        self.attached_at_stop = None

    def scan(self):
        self.log.append((self.name, 'scan'))
        if self.scan_error:
            raise self.scan_error
        if self.auto_present and self.tag is not None:
            self.present(self.tag.event())

    def stop(self):
        self.log.append((self.name, 'stop'))
        self.stop_count += 1
        self.attached_at_stop = self.on_reading is not None
        if self.error_on_stop:
            self._emit_error(NFCReadError("reader stopped"))

    def write(self, message):
        self.log.append((self.name, 'write'))
        if self.write_error:
            raise self.write_error
        self.written.append(message)
        if self.tag is not None:
            self.tag.message = message

    def present(self, event):
        self._emit_reading(event)

    def fail(self, error):
        self._emit_error(error)


class FakeReaderFactory:
    """Hands out pre-built readers in order, then auto-presenting readers on ``tag``."""

    def __init__(self, tag=None, readers=None):
        self.tag = tag
        self.queue = list(readers or [])
        self.readers = []
        self.log = []

    def __call__(self):
        if self.queue:
            reader = self.queue.pop(0)
            reader.log = self.log
        else:
            reader = FakeReader(self.tag, auto_present=True, log=self.log,
                                name=f'reader{len(self.readers) + 1}')
        self.readers.append(reader)
        return reader


class FakeTimer:
    """Stands in for threading.Timer; fires only when ``fire`` is called."""

    instances = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        FakeTimer.instances.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


class StubResolver:
    """Existence resolver backed by a dict of tag_id -> (entity_type, entity_id, name)."""

    def __init__(self, bindings=None, error=None):
        self.bindings = dict(bindings or {})
        self.error = error
        self.checked = []
        self.released = []

    def check_tag_exists(self, tag_id):
        self.checked.append(tag_id)
        if self.error:
            raise self.error
        if tag_id in self.bindings:
            entity_type, entity_id, name = self.bindings[tag_id]
            return {'exists': True, 'entity_type': entity_type,
                    'entity_id': entity_id, 'entity_name': name}
        return {'exists': False, 'entity_type': None, 'entity_id': None, 'entity_name': None}

    def find_entity_by_nfc_tag(self, tag_id):
        result = self.check_tag_exists(tag_id)
        if not result['exists']:
            return None
        return dict(result, tag_id=tag_id)

    def remove_entity_nfc_tag(self, entity_type, entity_id):
        self.released.append((entity_type, entity_id))
        for tag_id, (bound_type, bound_id, _) in list(self.bindings.items()):
            if (bound_type, bound_id) == (entity_type, entity_id):
                del self.bindings[tag_id]
                return True
        return False


class TestTagProcessor(unittest.TestCase):
    """Identifier codec and NDEF encoding."""

    def test_normalize(self):
        self.assertEqual(normalize("  ab-cd-ef-12 "), "ABCDEF12")
        self.assertEqual(normalize(None), "")
        self.assertEqual(normalize(""), "")

    def test_normalize_is_idempotent(self):
        for value in ["", "  x ", "ab-cd", "04:a2:3b", "---", "Blue Shirt", "ñandú-12", "\t1a2b3c4d\n"]:
            once = normalize(value)
            self.assertEqual(normalize(once), once)

    def test_is_valid_identifier(self):
        self.assertTrue(is_valid_identifier("1A2B3C4D"))
        self.assertTrue(is_valid_identifier("1a2b-3c4d"))
        self.assertTrue(is_valid_identifier(generate_new_identifier()))
        self.assertFalse(is_valid_identifier("1A2B3C4"))
        self.assertFalse(is_valid_identifier("GARMENT1"))
        self.assertFalse(is_valid_identifier("04:A2:3B:11:22:33"))
        self.assertFalse(is_valid_identifier(None))

    def test_is_serial_identifier(self):
        self.assertTrue(is_serial_identifier("04:a2:3b:11:22:33"))
        self.assertTrue(is_serial_identifier(derive_from_hardware_serial(b"\x04\xa2\x3b\x11", now_ms=0)))
        self.assertFalse(is_serial_identifier("04:A2:3B:11"))
        self.assertFalse(is_serial_identifier("1A2B3C4D"))

    def test_text_record_round_trip(self):
        for tag_id in ["1A2B3C4D", "ABCDEF12", generate_new_identifier()]:
            message = build_single_record_payload(tag_id)
            self.assertEqual(len(message), 1)
            self.assertEqual(decode_text_record(message.records[0].payload), tag_id)

            parsed = parse_ndef_message(message.encode_tlv())
            self.assertEqual(parsed.text_values(), [tag_id])

    def test_text_record_layout(self):
        payload = encode_text_record("1A2B3C4D")
        self.assertEqual(payload[0], 2)
        self.assertEqual(payload[1:3], b"en")
        self.assertEqual(payload[3:], b"1A2B3C4D")

    def test_decode_utf16_text_record(self):
        payload = bytes([0x80 | 2]) + b"en" + "1A2B3C4D".encode("utf-16")
        self.assertEqual(decode_text_record(payload), "1A2B3C4D")
        self.assertEqual(decode_text_record(b""), "")

    def test_encode_tlv_layout(self):
        data = build_single_record_payload("1A2B3C4D").encode_tlv()
        self.assertEqual(data[0], 0x03)
        self.assertEqual(len(data) % 4, 0)
        message_length = data[1]
        self.assertEqual(data[2 + message_length], 0xFE)
        self.assertEqual(ndef_length_from_header(data), 2 + message_length)

    def test_parse_skips_null_and_lock_control_tlvs(self):
        tlv = build_single_record_payload("ABCDEF12").encode_tlv()
        data = b"\x00\x00" + b"\x01\x03\xa0\x0c\x34" + tlv
        self.assertEqual(parse_ndef_message(data).text_values(), ["ABCDEF12"])

    def test_parse_empty_and_blank_areas(self):
        self.assertEqual(len(parse_ndef_message(b"")), 0)
        self.assertEqual(len(parse_ndef_message(b"\x03\x00\xfe\x00")), 0)
        self.assertEqual(len(parse_ndef_message(b"\x00\x00\x00\x00")), 0)

    def test_parse_truncated_tlv_raises(self):
        data = build_single_record_payload("1A2B3C4D").encode_tlv()
        with self.assertRaises(NFCReadError):
            parse_ndef_message(data[:6])

    def test_long_record_round_trip(self):
        record = NdefRecord(NDEF_TNF_MIME_MEDIA, b"application/octet-stream", bytes(range(256)) * 2)
        message = NdefMessage([record, NdefRecord.text("1A2B3C4D")])
        parsed = parse_ndef_message(message.encode_tlv())
        self.assertEqual(parsed.records, message.records)
        self.assertEqual(parsed.records[0].record_type, "mime")

    def test_record_to_dict(self):
        info = NdefRecord.text("1A2B3C4D").to_dict()
        self.assertEqual(info["record_type"], "text")
        self.assertEqual(info["text"], "1A2B3C4D")
        self.assertEqual(info["payload_hex"], "02656E3141324233433444")

    def test_derive_from_long_serial(self):
        serial = bytes.fromhex("04A23B11223344")
        self.assertEqual(derive_from_hardware_serial(serial), "04:A2:3B:11:22:33")

    def test_derive_from_short_serial_pads_with_timestamp(self):
        serial = bytes.fromhex("04A23B11")
        self.assertEqual(derive_from_hardware_serial(serial, now_ms=0x0102), "04:A2:3B:11:02:01")

    def test_derive_from_string_serial(self):
        self.assertEqual(derive_from_hardware_serial("ABCDEFG"), "41:42:43:44:45:46")
        self.assertIsNone(derive_from_hardware_serial(""))
        self.assertIsNone(derive_from_hardware_serial(None))

    def test_generate_new_identifier(self):
        first = generate_new_identifier()
        second = generate_new_identifier()
        self.assertEqual(len(first), 32)
        self.assertTrue(is_valid_identifier(first))
        self.assertNotEqual(first, second)


class TestSelectIdentifier(unittest.TestCase):
    """Priority chain for picking a tag's identifier."""

    def test_text_record_beats_serial(self):
        event = text_event("ABCDEF12", serial=bytes.fromhex("04A23B11223344"))
        selection = select_identifier(event)
        self.assertEqual(selection.tag_id, "ABCDEF12")
        self.assertEqual(selection.source_kind, SourceKind.WRITTEN_TEXT_1)

    def test_second_text_when_first_is_taken(self):
        event = text_event("ABCDEF12", "12345678")
        selection = select_identifier(event, is_taken=lambda tag_id: tag_id == "ABCDEF12")
        self.assertEqual(selection.tag_id, "12345678")
        self.assertEqual(selection.source_kind, SourceKind.WRITTEN_TEXT_2)

    def test_taken_first_text_kept_without_second(self):
        selection = select_identifier(text_event("ABCDEF12"), is_taken=lambda tag_id: True)
        self.assertEqual(selection.source_kind, SourceKind.WRITTEN_TEXT_1)

    def test_invalid_text_falls_through_to_serial(self):
        event = text_event("hello world", serial=bytes.fromhex("04A23B11223344"))
        selection = select_identifier(event)
        self.assertEqual(selection.tag_id, "04:A2:3B:11:22:33")
        self.assertEqual(selection.source_kind, SourceKind.HARDWARE_SERIAL)

    def test_hex_fallback(self):
        record = NdefRecord(NDEF_TNF_MIME_MEDIA, b"application/octet-stream", bytes.fromhex("DEADBEEF"))
        selection = select_identifier(TagReadEvent(None, NdefMessage([record])))
        self.assertEqual(selection.tag_id, "DEADBEEF")
        self.assertEqual(selection.source_kind, SourceKind.HEX_FALLBACK)

    def test_nothing_usable(self):
        self.assertFalse(select_identifier(TagReadEvent()))


class SessionTestCase(unittest.TestCase):

    def setUp(self):
        FakeTimer.instances = []

    @property
    def timer(self):
        return FakeTimer.instances[-1]


class TestReadSession(SessionTestCase):
    """Read session lifecycle."""

    def make_session(self, reader, resolver=None, **kwargs):
        factory = FakeReaderFactory(readers=[reader])
        return ReadSession(factory, resolver=resolver, timer_factory=FakeTimer, **kwargs)

    def test_known_tag_lookup(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver())
        session.start()
        reader.present(text_event("1A2B3C4D"))

        outcome = session.wait(0)
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.tag_id, "1A2B3C4D")
        self.assertEqual(outcome.source_kind, SourceKind.WRITTEN_TEXT_1)
        self.assertEqual(session.state, SessionState.RESOLVED_SUCCESS)

    def test_resolves_exactly_once_with_first_event(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver())
        session.start()
        handle_reading, handle_error = reader.on_reading, reader.on_reading_error

        handle_reading(text_event("1A2B3C4D"))
        handle_error(NFCReadError("late"))
        handle_reading(text_event("ABCDEF12"))
        self.timer.fire()

        outcome = session.wait(0)
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.tag_id, "1A2B3C4D")
        self.assertEqual(reader.stop_count, 1)

    def test_error_first_wins(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver())
        session.start()
        handle_reading = reader.on_reading

        reader.fail(NFCReadError("antenna"))
        handle_reading(text_event("1A2B3C4D"))

        outcome = session.wait(0)
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_kind, ErrorKind.HARDWARE_READ_ERROR)

    def test_stop_then_detach_then_cancel_timer(self):
        reader = FakeReader(error_on_stop=True)
        session = self.make_session(reader, resolver=StubResolver())
        session.start()
        reader.present(text_event("1A2B3C4D"))

        # stop() saw live callbacks and its trailing error event was dropped
        self.assertTrue(reader.attached_at_stop)
        self.assertIsNone(reader.on_reading)
        self.assertIsNone(reader.on_reading_error)
        self.assertTrue(self.timer.cancelled)
        self.assertTrue(session.wait(0).success)

    def test_duplicate_short_circuit(self):
        reader = FakeReader()
        resolver = StubResolver({"ABCDEF12": ("garment", 7, "Blue Shirt")})
        session = self.make_session(reader, resolver=resolver)
        session.start()
        reader.present(text_event("ABCDEF12"))

        outcome = session.wait(0)
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_kind, ErrorKind.ALREADY_ASSOCIATED)
        self.assertIn("Blue Shirt", outcome.message)
        self.assertEqual(session.state, SessionState.RESOLVED_FAILURE)

    def test_tag_bound_to_intended_entity_is_accepted(self):
        reader = FakeReader()
        resolver = StubResolver({"ABCDEF12": ("garment", 7, "Blue Shirt")})
        session = self.make_session(reader, resolver=resolver, intended_entity=("garment", "7"))
        session.start()
        reader.present(text_event("ABCDEF12"))

        self.assertTrue(session.wait(0).success)

    def test_spare_second_text_record(self):
        reader = FakeReader()
        resolver = StubResolver({"ABCDEF12": ("box", 3, "Winter Box")})
        session = self.make_session(reader, resolver=resolver)
        session.start()
        reader.present(text_event("ABCDEF12", "12345678"))

        outcome = session.wait(0)
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.tag_id, "12345678")
        self.assertEqual(outcome.source_kind, SourceKind.WRITTEN_TEXT_2)

    def test_skip_existence_check_ignores_bindings(self):
        reader = FakeReader()
        resolver = StubResolver({"ABCDEF12": ("garment", 7, "Blue Shirt")})
        session = self.make_session(reader, resolver=resolver, skip_existence_check=True)
        session.start()
        reader.present(text_event("ABCDEF12"))

        self.assertTrue(session.wait(0).success)
        self.assertEqual(resolver.checked, [])

    def test_fresh_tag_registration(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver())
        session.start()
        reader.present(TagReadEvent())

        outcome = session.wait(0)
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.source_kind, SourceKind.GENERATED)
        self.assertTrue(is_valid_identifier(outcome.tag_id))
        self.assertGreaterEqual(len(outcome.tag_id), 8)
        self.assertEqual(len(reader.written), 1)
        self.assertEqual(reader.written[0].text_values(), [outcome.tag_id])

    def test_timeout_during_registration_write_is_dropped(self):
        test = self

        class SlowWriteReader(FakeReader):
            def write(self, message):
                test.timer.fire()
                self.fail(NFCReadError("field lost"))
                super().write(message)

        reader = SlowWriteReader()
        session = self.make_session(reader, resolver=StubResolver(), id_generator=lambda: "CAFEBABE01")
        session.start()
        reader.present(TagReadEvent())

        outcome = session.wait(0)
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.tag_id, "CAFEBABE01")
        self.assertEqual(outcome.source_kind, SourceKind.GENERATED)
        self.assertEqual(session.state, SessionState.RESOLVED_SUCCESS)
        self.assertEqual(reader.stop_count, 1)

    def test_blank_tag_without_registration(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver(), skip_existence_check=True)
        session.start()
        reader.present(TagReadEvent())

        outcome = session.wait(0)
        self.assertEqual(outcome.error_kind, ErrorKind.NO_USABLE_IDENTIFIER)
        self.assertEqual(reader.written, [])

    def test_registration_write_failure(self):
        reader = FakeReader(write_error=NFCWriteError("tag moved"))
        session = self.make_session(reader, resolver=StubResolver(), id_generator=lambda: "CAFEBABE01")
        session.start()
        reader.present(TagReadEvent())

        outcome = session.wait(0)
        self.assertEqual(outcome.error_kind, ErrorKind.WRITE_FAILED)
        self.assertIn("tag moved", outcome.message)
        self.assertEqual(reader.stop_count, 1)

    def test_resolver_failure_treated_as_free(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver(error=RuntimeError("db down")))
        session.start()
        reader.present(text_event("1A2B3C4D"))

        self.assertTrue(session.wait(0).success)

    def test_timeout(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver())
        session.start()

        self.assertEqual(self.timer.interval, 30)
        self.assertTrue(self.timer.started)
        self.assertIsNone(session.wait(0))

        self.timer.fire()
        outcome = session.wait(0)
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_kind, ErrorKind.TIMEOUT)
        self.assertEqual(reader.stop_count, 1)

    def test_unsupported_environment(self):
        reader = FakeReader(scan_error=NFCUnsupportedError("no driver"))
        session = self.make_session(reader, resolver=StubResolver())

        outcome = session.run()
        self.assertEqual(outcome.error_kind, ErrorKind.UNSUPPORTED_ENVIRONMENT)

    def test_unexpected_exception(self):
        def broken_generator():
            raise RuntimeError("boom")

        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver(), id_generator=broken_generator)
        session.start()
        reader.present(TagReadEvent())

        outcome = session.wait(0)
        self.assertEqual(outcome.error_kind, ErrorKind.UNEXPECTED_EXCEPTION)

    def test_cancel(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver())
        session.start()

        self.assertTrue(session.cancel())
        self.assertFalse(session.cancel())
        self.assertEqual(session.wait(0).error_kind, ErrorKind.CANCELLED)

    def test_start_twice_is_refused(self):
        session = self.make_session(FakeReader(), resolver=StubResolver())
        session.start()
        with self.assertRaises(NFCSessionError):
            session.start()

    def test_outcome_to_dict(self):
        reader = FakeReader()
        session = self.make_session(reader, resolver=StubResolver())
        session.start()
        reader.present(text_event("1A2B3C4D"))

        data = session.wait(0).to_dict()
        self.assertEqual(data['tag_id'], "1A2B3C4D")
        self.assertEqual(data['source_kind'], 'written_text_1')
        self.assertEqual(data['raw_records'][0]['text'], "1A2B3C4D")


class TestWriteSession(SessionTestCase):
    """Write-then-verify lifecycle."""

    def make_session(self, factory, tag_id="1A2B3C4D", **kwargs):
        kwargs.setdefault('sleep', lambda seconds: None)
        return WriteSession(factory, tag_id, timer_factory=FakeTimer, **kwargs)

    def test_write_and_verify(self):
        tag = FakeTag()
        factory = FakeReaderFactory(tag)
        outcome = self.make_session(factory).run()

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.tag_id, "1A2B3C4D")
        self.assertEqual(tag.message.text_values(), ["1A2B3C4D"])
        self.assertEqual(len(factory.readers), 2)

    def test_write_reader_stopped_before_verification_reader(self):
        factory = FakeReaderFactory(FakeTag())
        self.make_session(factory).run()

        self.assertEqual(factory.log, [
            ('reader1', 'scan'), ('reader1', 'write'), ('reader1', 'stop'),
            ('reader2', 'scan'), ('reader2', 'stop'),
        ])

    def test_replaces_existing_records(self):
        tag = FakeTag(NdefMessage([NdefRecord.text("AAAAAAAA"), NdefRecord.text("BBBBBBBB")]))
        outcome = self.make_session(FakeReaderFactory(tag)).run()

        self.assertTrue(outcome.success)
        self.assertEqual(tag.message.text_values(), ["1A2B3C4D"])

    def test_settle_delay(self):
        delays = []
        session = self.make_session(FakeReaderFactory(FakeTag()), sleep=delays.append)
        session.run()
        self.assertEqual(delays, [1.5])

    def test_verification_mismatch(self):
        verify_reader = FakeReader(FakeTag(build_single_record_payload("FFFFFFFF")), auto_present=True)
        factory = FakeReaderFactory(FakeTag(), readers=[FakeReader(FakeTag(), auto_present=True), verify_reader])
        outcome = self.make_session(factory).run()

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_kind, ErrorKind.VERIFICATION_FAILED)
        self.assertIn("1A2B3C4D", outcome.message)
        self.assertIn("FFFFFFFF", outcome.message)
        self.assertEqual(outcome.observed, "FFFFFFFF")

    def test_normalized_read_back_matches(self):
        verify_reader = FakeReader(FakeTag(build_single_record_payload("1a2b-3c4d")), auto_present=True)
        factory = FakeReaderFactory(readers=[FakeReader(FakeTag(), auto_present=True), verify_reader])
        self.assertTrue(self.make_session(factory).run().success)

    def test_no_read_back(self):
        factory = FakeReaderFactory(readers=[FakeReader(FakeTag(), auto_present=True), FakeReader()])
        outcome = self.make_session(factory, verify_timeout=0.01).run()

        self.assertEqual(outcome.error_kind, ErrorKind.VERIFICATION_FAILED)
        self.assertIn("nothing", outcome.message)
        self.assertEqual(factory.readers[1].stop_count, 1)

    def test_write_failure_releases_reader(self):
        reader = FakeReader(FakeTag(), write_error=NFCWriteError("read-only"))
        factory = FakeReaderFactory(readers=[reader])
        session = self.make_session(factory)
        session.start()
        reader.present(text_event("00000000"))

        outcome = session.wait(0)
        self.assertEqual(outcome.error_kind, ErrorKind.WRITE_FAILED)
        self.assertEqual(reader.stop_count, 1)
        self.assertIsNone(reader.on_reading)
        self.assertEqual(len(factory.readers), 1)

    def test_second_tag_event_ignored(self):
        tag = FakeTag()
        reader = FakeReader(tag)
        factory = FakeReaderFactory(tag, readers=[reader])
        session = self.make_session(factory)
        session.start()
        handle_reading = reader.on_reading

        handle_reading(tag.event())
        handle_reading(tag.event())

        self.assertTrue(session.wait(0).success)
        self.assertEqual(len(reader.written), 1)

    def test_timeout_while_scanning(self):
        session = self.make_session(FakeReaderFactory(readers=[FakeReader()]))
        session.start()
        self.timer.fire()

        outcome = session.wait(0)
        self.assertEqual(outcome.error_kind, ErrorKind.TIMEOUT)
        self.assertEqual(outcome.to_dict()['error_kind'], 'timeout')

    def test_timeout_ignored_after_write(self):
        session = self.make_session(FakeReaderFactory(FakeTag()))
        session.run()
        self.timer.fire()

        self.assertTrue(session.wait(0).success)


class TestNFCController(SessionTestCase):
    """Controller calls with fake hardware."""

    def setUp(self):
        super().setUp()
        self.tag = FakeTag(build_single_record_payload("1A2B3C4D"))
        self.factory = FakeReaderFactory(self.tag)
        self.resolver = StubResolver({"1A2B3C4D": ("garment", 1, "Blue Shirt")})
        self.assertTrue(nfc_controller.initialize(
            reader_factory=self.factory,
            resolver=self.resolver,
            timer_factory=FakeTimer,
            write_settle_delay=0,
            verify_timeout=0.01,
            continuous_cooldown=0
        ))
        self.events = []
        self.listener = lambda **kwargs: self.events.append(kwargs)
        event_bus.on(EventNames.TAG_SCANNED, self.listener)
        event_bus.on(EventNames.TAG_WRITTEN, self.listener)
        event_bus.on(EventNames.TAG_RELEASED, self.listener)

    def tearDown(self):
        event_bus.off(EventNames.TAG_SCANNED, self.listener)
        event_bus.off(EventNames.TAG_WRITTEN, self.listener)
        event_bus.off(EventNames.TAG_RELEASED, self.listener)
        nfc_controller.shutdown()

    def test_read_tag(self):
        outcome = nfc_controller.read_tag(skip_existence_check=True)
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.tag_id, "1A2B3C4D")
        self.assertIs(self.events[0]['outcome'], outcome)
        self.assertFalse(nfc_controller.is_reading())

    def test_read_tag_refuses_bound_tag(self):
        outcome = nfc_controller.read_tag()
        self.assertEqual(outcome.error_kind, ErrorKind.ALREADY_ASSOCIATED)

    def test_read_tag_for_owner(self):
        outcome = nfc_controller.read_tag(intended_entity=("garment", 1))
        self.assertTrue(outcome.success)

    def test_not_initialized(self):
        nfc_controller.shutdown()
        outcome = nfc_controller.read_tag()
        self.assertEqual(outcome.error_kind, ErrorKind.UNSUPPORTED_ENVIRONMENT)

    def test_write_tag(self):
        outcome = nfc_controller.write_tag("cafe-babe")
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.tag_id, "CAFEBABE")
        self.assertEqual(self.tag.message.text_values(), ["CAFEBABE"])
        self.assertIs(self.events[0]['outcome'], outcome)

    def test_write_tag_rejects_invalid_id(self):
        outcome = nfc_controller.write_tag("not-hex")

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_kind, ErrorKind.WRITE_FAILED)
        self.assertEqual(outcome.expected, "not-hex")
        self.assertEqual(self.factory.readers, [])
        self.assertEqual(self.tag.message.text_values(), ["1A2B3C4D"])

    def test_inspect_tag(self):
        result = nfc_controller.inspect_tag()
        self.assertTrue(result['outcome']['success'])
        self.assertEqual(result['selected_source'], 'written_text_1')
        self.assertEqual(result['records'][0]['text'], "1A2B3C4D")
        self.assertEqual(result['association']['entity_name'], "Blue Shirt")

    def test_release_and_rewrite(self):
        outcome = nfc_controller.rewrite_tag(release_from=("garment", 1))

        self.assertTrue(outcome.success)
        self.assertNotEqual(outcome.tag_id, "1A2B3C4D")
        self.assertEqual(self.resolver.released, [("garment", 1)])
        self.assertEqual(self.tag.message.text_values(), [outcome.tag_id])
        self.assertEqual(self.events[0], {'entity_type': 'garment', 'entity_id': 1})

    def test_rewrite_with_invalid_id_keeps_binding(self):
        outcome = nfc_controller.rewrite_tag(tag_id="GARMENT1", release_from=("garment", 1))

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_kind, ErrorKind.WRITE_FAILED)
        self.assertEqual(self.resolver.released, [])
        self.assertEqual(self.resolver.bindings["1A2B3C4D"], ("garment", 1, "Blue Shirt"))
        self.assertEqual(self.factory.readers, [])
        self.assertEqual(self.events, [])

    def test_release_rejects_unknown_entity_type(self):
        with self.assertRaises(ValidationError):
            nfc_controller.release_tag("shoe", 1)

    def test_continuous_scan(self):
        exit_event = threading.Event()
        outcomes = []

        def on_outcome(outcome):
            outcomes.append(outcome)
            if len(outcomes) == 3:
                exit_event.set()

        nfc_controller.continuous_scan(on_outcome, exit_event=exit_event)

        self.assertEqual(len(outcomes), 3)
        self.assertTrue(all(o.tag_id == "1A2B3C4D" for o in outcomes))
        self.assertEqual(len(self.factory.readers), 3)

    def test_continuous_scan_stops_when_unsupported(self):
        nfc_controller.initialize(
            reader_factory=lambda: FakeReader(scan_error=NFCUnsupportedError("no reader")),
            resolver=self.resolver,
            timer_factory=FakeTimer
        )
        outcomes = []
        nfc_controller.continuous_scan(outcomes.append, cooldown=0)
        self.assertEqual(outcomes, [])

    def test_cancel_without_session(self):
        self.assertFalse(nfc_controller.cancel())
        self.assertFalse(nfc_controller.is_writing())

    def test_support_info_with_custom_reader(self):
        info = nfc_controller.get_nfc_support_info()
        self.assertTrue(info['supported'])
        self.assertTrue(nfc_controller.check_nfc_support())


if __name__ == '__main__':
    unittest.main()
