"""Tests for the per-stream event decoder."""

import dataclasses

import pytest

from ssestream.decoder.event_decoder import EventDecoder
from ssestream.decoder.state_machine import DecoderPhase, InvalidTransition, TerminationReason
from ssestream.errors import BufferOverflowError, ProtocolViolation
from ssestream.event import Event


def _feed(decoder, *lines: bytes) -> list[Event]:
    events = []
    for line in lines:
        event = decoder.feed_line(line)
        if event is not None:
            events.append(event)
    return events


class TestFieldAssignment:
    def test_full_event(self):
        events = _feed(EventDecoder(), b"id: 42\n", b"event: update\n", b'data: {"x":1}\n', b"\n")
        assert events == [Event(name="update", id="42", data={"x": 1})]

    def test_bare_prefixes(self):
        events = _feed(EventDecoder(), b"id:7\n", b"event:tick\n", b'data:{"n":2}\n', b"\n")
        assert events[0].id == "7"
        assert events[0].name == "tick"
        assert events[0].data == {"n": 2}

    def test_extra_space_kept(self):
        events = _feed(EventDecoder(), b"id:  7\n", b"data: {}\n", b"\n")
        assert events[0].id == " 7"

    def test_empty_event_name(self):
        decoder = EventDecoder()
        decoder.feed_line(b"event:\n")
        assert decoder.phase == DecoderPhase.FIELDS
        events = _feed(decoder, b"data: {}\n", b"\n")
        assert events[0].name == ""

    def test_unset_fields_default_empty(self):
        events = _feed(EventDecoder(), b'data: {"a": true}\n', b"\n")
        assert events[0].name == ""
        assert events[0].id == ""

    def test_utf8_name(self):
        events = _feed(EventDecoder(), "event: größe\n".encode(), b"data: {}\n", b"\n")
        assert events[0].name == "größe"

    def test_last_field_value_wins(self):
        events = _feed(EventDecoder(), b"id: 1\n", b"id: 2\n", b"data: {}\n", b"\n")
        assert events[0].id == "2"


class TestDataAccumulation:
    def test_newline_retained_in_buffer(self):
        decoder = EventDecoder()
        decoder.feed_line(b'data: {"x":\n')
        decoder.feed_line(b"data: 1}\n")
        assert decoder.pending_data == b'{"x":\n1}\n'

    def test_multiline_concatenation(self):
        events = _feed(EventDecoder(), b'data: {"x":\n', b"data: 1}\n", b"\n")
        assert events[0].data == {"x": 1}

    def test_nested_json(self):
        events = _feed(EventDecoder(), b'data: {"a": {"b": [1, 2, null]}}\n', b"\n")
        assert events[0].data == {"a": {"b": [1, 2, None]}}

    def test_overflow_terminates(self):
        decoder = EventDecoder(max_buffer_bytes=16)
        decoder.feed_line(b'data: {"a":\n')
        with pytest.raises(BufferOverflowError) as exc_info:
            decoder.feed_line(b'data: "0123456789"}\n')
        assert exc_info.value.limit == 16
        assert decoder.phase == DecoderPhase.TERMINATED
        assert decoder.termination_reason == TerminationReason.BUFFER_OVERFLOW


class TestNoOps:
    def test_comment_and_retry_do_not_change_state(self):
        decoder = EventDecoder()
        assert decoder.feed_line(b": hello\n") is None
        assert decoder.feed_line(b"retry: 3000\n") is None
        assert decoder.phase == DecoderPhase.IDLE

    def test_blank_without_fields_emits_nothing(self):
        decoder = EventDecoder()
        assert _feed(decoder, b": hello\n", b"retry: 3000\n", b"\n") == []
        assert decoder.events_dropped == 0

    def test_comment_between_data_lines(self):
        events = _feed(EventDecoder(), b'data: {"x":\n', b": keepalive\n", b"data: 1}\n", b"\n")
        assert events[0].data == {"x": 1}


class TestDroppedPayloads:
    def test_not_json(self):
        decoder = EventDecoder()
        assert _feed(decoder, b"data: not-json\n", b"\n") == []
        assert decoder.events_dropped == 1
        assert decoder.phase == DecoderPhase.IDLE

    def test_invalid_json_object(self):
        decoder = EventDecoder()
        assert _feed(decoder, b'data: {"x":\n', b"\n") == []
        assert decoder.events_dropped == 1

    def test_array_payload_dropped(self):
        assert _feed(EventDecoder(), b"data: [1, 2]\n", b"\n") == []

    def test_deeply_nested_payload_dropped(self):
        decoder = EventDecoder()
        nested = b'data: {"a":' + b"[" * 100_000 + b"]" * 100_000 + b"}\n"
        assert _feed(decoder, nested, b"\n") == []
        assert decoder.events_dropped == 1
        assert decoder.phase == DecoderPhase.IDLE
        events = _feed(decoder, b'data: {"ok": 1}\n', b"\n")
        assert events == [Event(data={"ok": 1})]

    def test_fields_without_data_dropped(self):
        decoder = EventDecoder()
        assert _feed(decoder, b"event: ping\n", b"\n") == []
        assert decoder.events_dropped == 1

    def test_state_reset_after_drop(self):
        decoder = EventDecoder()
        events = _feed(
            decoder,
            b"id: 1\n", b"event: bad\n", b"data: nope\n", b"\n",
            b'data: {"ok": 1}\n', b"\n",
        )
        assert events == [Event(data={"ok": 1})]

    def test_carry_over_keeps_stale_state(self):
        decoder = EventDecoder(carry_over_on_drop=True)
        assert _feed(decoder, b"id: 1\n", b'data: {"x":\n', b"\n") == []
        assert decoder.pending_data == b'{"x":\n'
        events = _feed(decoder, b"data: 1}\n", b"\n")
        assert events == [Event(id="1", data={"x": 1})]

    def test_carry_over_prefixes_next_payload(self):
        decoder = EventDecoder(carry_over_on_drop=True)
        events = _feed(decoder, b"data: nope\n", b"\n", b'data: {"a": 1}\n', b"\n")
        assert events == []
        assert decoder.pending_data == b'nope\n{"a": 1}\n'
        assert decoder.events_dropped == 2


class TestProtocolViolation:
    def test_garbage_line(self):
        decoder = EventDecoder()
        with pytest.raises(ProtocolViolation) as exc_info:
            decoder.feed_line(b"garbage\n")
        assert exc_info.value.line == b"garbage\n"
        assert decoder.phase == DecoderPhase.TERMINATED
        assert decoder.termination_reason == TerminationReason.PROTOCOL_VIOLATION

    def test_crlf_blank_line(self):
        decoder = EventDecoder()
        decoder.feed_line(b"data: {}\n")
        with pytest.raises(ProtocolViolation):
            decoder.feed_line(b"\r\n")

    def test_feed_after_termination(self):
        decoder = EventDecoder()
        decoder.terminate(TerminationReason.END_OF_STREAM)
        with pytest.raises(InvalidTransition):
            decoder.feed_line(b"data: {}\n")

    def test_terminate_keeps_first_reason(self):
        decoder = EventDecoder()
        decoder.terminate(TerminationReason.READ_ERROR)
        decoder.terminate(TerminationReason.CANCELLED)
        assert decoder.termination_reason == TerminationReason.READ_ERROR


class TestEmission:
    def test_phase_cycle(self):
        decoder = EventDecoder()
        decoder.feed_line(b"data: {}\n")
        assert decoder.phase == DecoderPhase.FIELDS
        decoder.feed_line(b"\n")
        assert decoder.phase == DecoderPhase.IDLE
        assert decoder.events_emitted == 1

    def test_events_are_independent(self):
        decoder = EventDecoder()
        first, second = _feed(
            decoder,
            b"id: 1\n", b"event: a\n", b'data: {"n": 1}\n', b"\n",
            b'data: {"n": 2}\n', b"\n",
        )
        assert first == Event(name="a", id="1", data={"n": 1})
        assert second == Event(data={"n": 2})

    def test_events_are_frozen(self):
        (event,) = _feed(EventDecoder(), b"data: {}\n", b"\n")
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.name = "changed"
