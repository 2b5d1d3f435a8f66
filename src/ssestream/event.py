"""Decoded event and stream termination types."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .decoder.state_machine import TerminationReason


@dataclass(frozen=True)
class Event:
    """A single decoded Server-Sent Event."""

    name: str = ""
    id: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        """Serialize back to SSE wire format."""
        lines: list[str] = []
        if self.id:
            lines.append(f"id: {self.id}")
        if self.name:
            lines.append(f"event: {self.name}")
        lines.append(f"data: {json.dumps(self.data, separators=(',', ':'))}")
        lines.append("")  # blank line terminates event
        return ("\n".join(lines) + "\n").encode()


@dataclass(frozen=True)
class Termination:
    """Why a stream stopped, and the error behind it if any."""

    reason: TerminationReason
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.reason == TerminationReason.END_OF_STREAM
