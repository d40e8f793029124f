"""Configuration model and loader for AG-UI event streams."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

LOGGER = logging.getLogger(__name__)


class StreamConfig(BaseModel):
    """Connection and reconnect options for one SSE endpoint."""

    url: str
    auto_reconnect: bool = Field(
        default=True,
        validation_alias=AliasChoices("auto_reconnect", "autoReconnect"),
    )
    initial_delay_ms: float = Field(
        default=1000,
        ge=0,
        validation_alias=AliasChoices(
            "initial_delay_ms", "initialDelayMs", "reconnect_delay_ms", "reconnectDelayMs"
        ),
    )
    max_delay_ms: float = Field(
        default=30000,
        ge=0,
        validation_alias=AliasChoices("max_delay_ms", "maxDelayMs"),
    )
    backoff_multiplier: float = Field(
        default=2,
        ge=1,
        validation_alias=AliasChoices("backoff_multiplier", "backoffMultiplier"),
    )
    max_reconnect_attempts: int = Field(
        default=10,
        ge=0,
        validation_alias=AliasChoices("max_reconnect_attempts", "maxReconnectAttempts"),
    )
    jitter_ms: float = Field(
        default=1000,
        ge=0,
        validation_alias=AliasChoices("jitter_ms", "jitterMs"),
    )
    headers: dict[str, str] = Field(default_factory=dict)
    # Send ``headers`` as query parameters for endpoints fronted by proxies
    # that strip custom request headers.
    headers_as_query: bool = Field(
        default=False,
        validation_alias=AliasChoices("headers_as_query", "headersAsQuery"),
    )
    request_timeout_s: float = Field(default=30.0, gt=0)
    heartbeat_timeout_s: float | None = Field(default=None, gt=0)
    metrics_log_interval_s: float | None = Field(default=None, gt=0)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @model_validator(mode="after")
    def _check_url(self) -> "StreamConfig":
        if not self.url.strip():
            raise ValueError("url must not be empty")
        return self


def load_stream_config(path: str | Path, **overrides: Any) -> StreamConfig:
    """
    Load a StreamConfig from a YAML file.

    The file may hold the options at the top level or under a ``stream`` key.
    Keyword overrides win over file values.

    Raises:
        FileNotFoundError: if ``path`` does not exist
        pydantic.ValidationError: if the merged options are invalid
    """
    config_path = Path(path)
    with config_path.open("r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    section = data.get("stream", data)
    merged = {**section, **{k: v for k, v in overrides.items() if v is not None}}
    LOGGER.debug(f"Loaded stream config from {config_path}")
    return StreamConfig.model_validate(merged)


__all__ = ["StreamConfig", "load_stream_config"]
