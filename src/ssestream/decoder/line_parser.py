"""Low-level SSE line protocol parser.

Splits a raw byte stream into newline-terminated lines and classifies each
line by its field prefix.
"""

from __future__ import annotations

import enum
from collections.abc import AsyncIterable, AsyncIterator

import structlog

from ..errors import BufferOverflowError

log = structlog.get_logger()


class LineKind(enum.Enum):
    COMMENT = "COMMENT"
    RETRY = "RETRY"
    ID = "ID"
    EVENT = "EVENT"
    DATA = "DATA"
    BLANK = "BLANK"
    INVALID = "INVALID"


# Checked in order, first match wins. The spaced spelling of each field
# must come before the bare one.
_PREFIXES: list[tuple[bytes, LineKind]] = [
    (b":", LineKind.COMMENT),
    (b"retry:", LineKind.RETRY),
    (b"id: ", LineKind.ID),
    (b"id:", LineKind.ID),
    (b"event: ", LineKind.EVENT),
    (b"event:", LineKind.EVENT),
    (b"data: ", LineKind.DATA),
    (b"data:", LineKind.DATA),
]


def classify_line(line: bytes) -> tuple[LineKind, bytes]:
    """Classify a raw line, returning its kind and the bytes after the prefix.

    The remainder keeps the trailing newline; callers decide whether to trim it.
    """
    for prefix, kind in _PREFIXES:
        if line.startswith(prefix):
            return kind, line[len(prefix):]
    if line == b"\n":
        return LineKind.BLANK, b""
    return LineKind.INVALID, line


async def iter_lines(
    chunks: AsyncIterable[bytes],
    max_line_bytes: int = 10_000_000,
) -> AsyncIterator[bytes]:
    """Re-assemble arbitrarily sized chunks into lines, each ending in b"\\n".

    An unterminated tail at end of stream is discarded.
    """
    buffer = bytearray()

    async for chunk in chunks:
        if not chunk:
            continue
        buffer += chunk

        start = 0
        while True:
            end = buffer.find(b"\n", start)
            if end == -1:
                break
            if end + 1 - start > max_line_bytes:
                raise BufferOverflowError(end + 1 - start, max_line_bytes)
            yield bytes(buffer[start:end + 1])
            start = end + 1
        del buffer[:start]

        if len(buffer) > max_line_bytes:
            raise BufferOverflowError(len(buffer), max_line_bytes)

    if buffer:
        log.debug("partial_line_discarded", length=len(buffer))
