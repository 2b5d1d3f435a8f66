"""Decoder phase state machine.

IDLE ──[field line]──→ FIELDS ──[terminator]──→ IDLE
  │                      │
  └──────[fatal]─────────┴──────→ TERMINATED

TERMINATED is final: no transition leaves it.
"""

from __future__ import annotations

import enum
from typing import Any

import structlog

log = structlog.get_logger()


class DecoderPhase(enum.Enum):
    IDLE = "IDLE"
    FIELDS = "FIELDS"
    TERMINATED = "TERMINATED"


class TerminationReason(enum.Enum):
    END_OF_STREAM = "END_OF_STREAM"
    READ_ERROR = "READ_ERROR"
    PROTOCOL_VIOLATION = "PROTOCOL_VIOLATION"
    BUFFER_OVERFLOW = "BUFFER_OVERFLOW"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CANCELLED = "CANCELLED"


# Valid transitions: (from_phase, to_phase)
VALID_TRANSITIONS: set[tuple[DecoderPhase, DecoderPhase]] = {
    (DecoderPhase.IDLE, DecoderPhase.FIELDS),
    (DecoderPhase.FIELDS, DecoderPhase.IDLE),
    (DecoderPhase.IDLE, DecoderPhase.TERMINATED),
    (DecoderPhase.FIELDS, DecoderPhase.TERMINATED),
}


class InvalidTransition(Exception):
    """Raised when an invalid phase transition is attempted."""

    def __init__(self, from_phase: DecoderPhase, to_phase: DecoderPhase) -> None:
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Invalid transition: {from_phase.value} → {to_phase.value}")


def validate_transition(from_phase: DecoderPhase, to_phase: DecoderPhase) -> None:
    """Validate a phase transition, raising InvalidTransition if not allowed."""
    if (from_phase, to_phase) not in VALID_TRANSITIONS:
        raise InvalidTransition(from_phase, to_phase)


def transition(
    current: DecoderPhase,
    target: DecoderPhase,
    trigger: str = "",
    logger: Any | None = None,
) -> DecoderPhase:
    """Execute a validated phase transition, logging the change."""
    validate_transition(current, target)
    (logger or log).debug(
        "phase_transition",
        from_phase=current.value,
        to_phase=target.value,
        trigger=trigger,
    )
    return target
