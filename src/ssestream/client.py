"""Stream source: open an HTTP event stream and hand its body to the decoder."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from .config import StreamConfig
from .decoder.stream import EventStream, decode
from .errors import SSEConnectionError

log = structlog.get_logger()

_DEFAULT_HEADERS = {
    "accept": "text/event-stream",
    "cache-control": "no-cache",
}


def build_client(config: StreamConfig) -> httpx.AsyncClient:
    """Create an httpx client with stream-friendly timeouts."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.connect_timeout_s, read=config.read_timeout_s),
        follow_redirects=True,
    )


async def open_stream(
    url: str,
    config: StreamConfig | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    headers: dict[str, str] | None = None,
    logger: Any | None = None,
) -> EventStream:
    """GET ``url`` and start decoding its body as a text/event-stream.

    Args:
        url: Event stream endpoint.
        config: Stream configuration. Defaults to StreamConfig().
        client: Optional pre-configured httpx client (for testing or pooling).
            If not provided, one is created and closed with the stream.
        headers: Extra request headers.
        logger: structlog-style logger receiving decode diagnostics.

    Raises:
        SSEConnectionError: the request failed or returned a non-200 status.
    """
    if config is None:
        config = StreamConfig()
    _log = logger or log

    owns_client = client is None
    http_client = client if client is not None else build_client(config)

    request = http_client.build_request("GET", url, headers={**_DEFAULT_HEADERS, **(headers or {})})
    try:
        response = await http_client.send(request, stream=True)
    except httpx.HTTPError as exc:
        _log.error("stream_connection_error", url=url, error=str(exc))
        if owns_client:
            await http_client.aclose()
        raise SSEConnectionError(url, message=f"connection failed: {exc}") from exc
    except BaseException:
        # Cancellation or an unexpected error; still release our own client.
        if owns_client:
            await http_client.aclose()
        raise

    if response.status_code != 200:
        try:
            await response.aread()
            error_body = response.text[:500]
        except httpx.HTTPError:
            error_body = ""
        finally:
            await response.aclose()
            if owns_client:
                await http_client.aclose()
        _log.warning(
            "stream_rejected",
            url=url,
            status=response.status_code,
            body=error_body,
        )
        raise SSEConnectionError(url, response.status_code)

    _log.info(
        "stream_opened",
        url=url,
        content_type=response.headers.get("content-type", ""),
    )

    async def _close() -> None:
        await response.aclose()
        if owns_client:
            await http_client.aclose()

    return decode(response.aiter_bytes(), config, logger=logger, on_close=_close)
