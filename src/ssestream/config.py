"""Stream configuration via environment variables (SSESTREAM_ prefix) or defaults."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class StreamConfig(BaseSettings):
    connect_timeout_s: float = 10.0
    read_timeout_s: float | None = None  # event streams idle for long stretches
    # asyncio.Queue treats 0 as unbounded, so at least one slot is required.
    queue_size: int = Field(default=1, ge=1)
    max_buffer_bytes: int = Field(default=10_000_000, ge=1)  # 10 MB
    carry_over_on_drop: bool = False
    log_level: str = "INFO"
    log_dir: str | None = None

    model_config = {"env_prefix": "SSESTREAM_"}
