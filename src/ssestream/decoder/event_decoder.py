"""Per-stream event decoder: accumulates field lines and dispatches events.

One EventDecoder holds the in-progress event for a single stream. It is fed
one raw line at a time and returns a completed Event when a blank-line
terminator closes a well-formed JSON object payload.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from ..errors import BufferOverflowError, PayloadDecodeFailure, ProtocolViolation
from ..event import Event
from .line_parser import LineKind, classify_line
from .state_machine import DecoderPhase, InvalidTransition, TerminationReason, transition

log = structlog.get_logger()


def _decode_text(value: bytes) -> str:
    """Field values lose their single trailing newline."""
    return value.removesuffix(b"\n").decode("utf-8", errors="replace")


def _decode_payload(payload: bytes) -> dict[str, Any]:
    if not payload.startswith(b"{"):
        raise PayloadDecodeFailure(payload, "not_object")
    try:
        return json.loads(payload)
    except (ValueError, RecursionError) as exc:
        raise PayloadDecodeFailure(payload, "invalid_json") from exc


class EventDecoder:
    """Line-driven SSE decoder for a single stream."""

    def __init__(
        self,
        max_buffer_bytes: int = 10_000_000,
        carry_over_on_drop: bool = False,
        logger: Any | None = None,
    ) -> None:
        self.max_buffer_bytes = max_buffer_bytes
        # Keep pending fields and data after a dropped event instead of
        # resetting them; the next payload is appended to the stale bytes.
        self.carry_over_on_drop = carry_over_on_drop
        self._log = logger or log

        self.phase = DecoderPhase.IDLE
        self.termination_reason: TerminationReason | None = None
        self.events_emitted: int = 0
        self.events_dropped: int = 0

        self._name = ""
        self._id = ""
        self._data = bytearray()

    @property
    def pending_data(self) -> bytes:
        return bytes(self._data)

    def feed_line(self, line: bytes) -> Event | None:
        """Process one newline-terminated line.

        Returns the dispatched Event, or None if the line did not complete one.

        Raises:
            ProtocolViolation: the line matched no known prefix.
            BufferOverflowError: the data buffer grew past max_buffer_bytes.
            InvalidTransition: the decoder has already terminated.
        """
        if self.phase == DecoderPhase.TERMINATED:
            raise InvalidTransition(self.phase, DecoderPhase.FIELDS)

        kind, value = classify_line(line)

        if kind in (LineKind.COMMENT, LineKind.RETRY):
            return None

        if kind == LineKind.ID:
            self._id = _decode_text(value)
            self._enter_fields("id")
            return None

        if kind == LineKind.EVENT:
            self._name = _decode_text(value)
            self._enter_fields("event")
            return None

        if kind == LineKind.DATA:
            self._data += value
            if len(self._data) > self.max_buffer_bytes:
                size = len(self._data)
                self.terminate(TerminationReason.BUFFER_OVERFLOW)
                raise BufferOverflowError(size, self.max_buffer_bytes)
            self._enter_fields("data")
            return None

        if kind == LineKind.BLANK:
            return self._dispatch()

        self.terminate(TerminationReason.PROTOCOL_VIOLATION)
        raise ProtocolViolation(line)

    def terminate(self, reason: TerminationReason) -> None:
        """Move to TERMINATED. Later calls keep the first reason."""
        if self.phase == DecoderPhase.TERMINATED:
            return
        self.phase = transition(self.phase, DecoderPhase.TERMINATED, reason.value, self._log)
        self.termination_reason = reason

    def _dispatch(self) -> Event | None:
        if self.phase == DecoderPhase.IDLE:
            return None

        payload = bytes(self._data)
        try:
            data = _decode_payload(payload)
        except PayloadDecodeFailure as exc:
            self.events_dropped += 1
            self._log.debug(
                "event_dropped",
                reason=exc.reason,
                length=len(payload),
                event_name=self._name,
                event_id=self._id,
            )
            if not self.carry_over_on_drop:
                self._reset("dropped")
            return None

        event = Event(name=self._name, id=self._id, data=data)
        self._reset("dispatched")
        self.events_emitted += 1
        return event

    def _enter_fields(self, trigger: str) -> None:
        if self.phase == DecoderPhase.IDLE:
            self.phase = transition(self.phase, DecoderPhase.FIELDS, trigger, self._log)

    def _reset(self, trigger: str) -> None:
        self._name = ""
        self._id = ""
        self._data = bytearray()
        if self.phase == DecoderPhase.FIELDS:
            self.phase = transition(self.phase, DecoderPhase.IDLE, trigger, self._log)
