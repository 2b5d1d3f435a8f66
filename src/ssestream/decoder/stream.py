"""Background decode task and the consumer-facing event stream.

decode() starts one asyncio task per byte stream. The task reads lines,
feeds them to an EventDecoder and hands completed events to the consumer
through a bounded queue (one slot by default, so the producer waits for the
consumer on every event).
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterable, Awaitable, Callable
from typing import Any

import httpx
import structlog

from ..config import StreamConfig
from ..errors import BufferOverflowError, ProtocolViolation, StreamReadError
from ..event import Event, Termination
from .event_decoder import EventDecoder
from .line_parser import iter_lines
from .state_machine import DecoderPhase, TerminationReason

log = structlog.get_logger()

_READ_ERRORS = (httpx.HTTPError, httpx.StreamError, OSError)


class EventStream:
    """Async iterator over events decoded by a background task.

    Iteration stops once the task has terminated and every queued event has
    been delivered. ``termination`` then says why:

        async with decode(chunks) as events:
            async for event in events:
                handle(event)
        if not events.termination.ok:
            ...
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        decoder: EventDecoder,
        queue_size: int = 1,
        logger: Any | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._chunks = chunks
        self._decoder = decoder
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=queue_size)
        self._log = logger or log
        self._on_close = on_close
        self.termination: Termination | None = None
        self._task: asyncio.Task[None] = asyncio.create_task(self._run())

    @property
    def phase(self) -> DecoderPhase:
        return self._decoder.phase

    @property
    def events_emitted(self) -> int:
        return self._decoder.events_emitted

    @property
    def events_dropped(self) -> int:
        return self._decoder.events_dropped

    @property
    def closed(self) -> bool:
        return self._task.done()

    async def _run(self) -> None:
        reason = TerminationReason.END_OF_STREAM
        error: Exception | None = None
        try:
            lines = iter_lines(self._chunks, self._decoder.max_buffer_bytes)
            async with contextlib.aclosing(lines):
                async for line in lines:
                    event = self._decoder.feed_line(line)
                    if event is not None:
                        await self._queue.put(event)
        except ProtocolViolation as exc:
            reason, error = TerminationReason.PROTOCOL_VIOLATION, exc
            self._log.error(
                "protocol_violation",
                length=len(exc.line),
                line=exc.line[:200].decode("utf-8", errors="replace"),
            )
        except BufferOverflowError as exc:
            reason, error = TerminationReason.BUFFER_OVERFLOW, exc
            self._log.error("buffer_overflow", size=exc.size, limit=exc.limit)
        except _READ_ERRORS as exc:
            reason = TerminationReason.READ_ERROR
            error = StreamReadError(f"error during stream read: {exc!r}")
            error.__cause__ = exc
            self._log.error(
                "stream_read_error",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        except asyncio.CancelledError:
            reason = TerminationReason.CANCELLED
            self._log.info("stream_cancelled", events_emitted=self.events_emitted)
            raise
        except Exception as exc:
            reason, error = TerminationReason.INTERNAL_ERROR, exc
            self._log.exception("stream_failed")
            raise
        else:
            self._log.info(
                "stream_ended",
                events_emitted=self.events_emitted,
                events_dropped=self.events_dropped,
            )
        finally:
            self._decoder.terminate(reason)
            self.termination = Termination(reason, error)
            if self._on_close is not None:
                await self._on_close()

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> Event:
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self._task.done():
                if not self._task.cancelled() and self._task.exception() is not None:
                    raise self._task.exception()
                raise StopAsyncIteration

            # Wait for either the next event or the producer finishing, so a
            # terminated producer never leaves the consumer blocked on get().
            getter = asyncio.ensure_future(self._queue.get())
            try:
                await asyncio.wait({getter, self._task}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                getter.cancel()
                raise
            if getter.done() and not getter.cancelled():
                return getter.result()
            # A cancelled get() leaves any pending item in the queue.
            getter.cancel()

    def cancel(self) -> None:
        """Request early shutdown of the decode task. Prefer aclose(), which also waits."""
        self._task.cancel()

    async def aclose(self) -> None:
        """Cancel the decode task and wait for it to release the stream."""
        if not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

        if self.termination is None:
            # Cancelled before its first step, so _run never got to clean up.
            self._decoder.terminate(TerminationReason.CANCELLED)
            self.termination = Termination(TerminationReason.CANCELLED)
            if self._on_close is not None:
                await self._on_close()

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def decode(
    chunks: AsyncIterable[bytes],
    config: StreamConfig | None = None,
    *,
    logger: Any | None = None,
    on_close: Callable[[], Awaitable[None]] | None = None,
) -> EventStream:
    """Start decoding ``chunks`` in a background task and return its EventStream.

    Must be called from a running event loop. The task owns ``chunks`` until it
    terminates; ``on_close`` runs once when it does.
    """
    if config is None:
        config = StreamConfig()

    decoder = EventDecoder(
        max_buffer_bytes=config.max_buffer_bytes,
        carry_over_on_drop=config.carry_over_on_drop,
        logger=logger,
    )
    return EventStream(
        chunks,
        decoder,
        queue_size=config.queue_size,
        logger=logger,
        on_close=on_close,
    )
