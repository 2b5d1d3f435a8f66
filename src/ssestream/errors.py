"""Error taxonomy for opening and decoding event streams."""

from __future__ import annotations


class SSEError(Exception):
    """Base class for all ssestream errors."""


class SSEConnectionError(SSEError, ConnectionError):
    """The stream could not be opened: transport failure or non-200 status."""

    def __init__(self, url: str, status_code: int | None = None, message: str = "") -> None:
        self.url = url
        self.status_code = status_code
        if not message:
            message = f"got response status code {status_code}"
        self.message = message
        super().__init__(f"{url}: {message}")


class StreamReadError(SSEError):
    """The byte stream failed mid-read."""


class ProtocolViolation(SSEError):
    """A line matched no known field prefix and was not a blank terminator."""

    def __init__(self, line: bytes) -> None:
        self.line = line
        super().__init__(f"Unrecognized line (len={len(line)}): {line[:80]!r}")


class BufferOverflowError(SSEError):
    """A line or accumulated data payload grew past the configured limit."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"SSE buffer overflow: {size} bytes (limit {limit})")


class PayloadDecodeFailure(SSEError):
    """Buffered data did not decode as a JSON object. Non-fatal."""

    def __init__(self, payload: bytes, reason: str) -> None:
        self.payload = payload
        self.reason = reason
        super().__init__(f"Dropped event payload ({reason}): {payload[:80]!r}")
