"""Client configuration via environment variables (SSESOURCE_ prefix) or defaults."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class EventSourceConfig(BaseSettings):
    retry_interval: float = Field(default=1.0, ge=0)  # seconds; also the delay before the first connect
    timeout: float = Field(default=300.0, gt=0)
    max_buffer_chars: int = 50_000_000  # pending partial frame, in characters
    headers: dict[str, str] = {}
    log_dir: str = "logs"
    log_level: str = "INFO"

    model_config = {"env_prefix": "SSESOURCE_"}
