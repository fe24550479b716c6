"""Configuration objects and constants for the Figma client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigError

DEFAULT_BASE_URL = "https://api.figma.com/v1"
USER_AGENT = "figma-mcp/0.1"


@dataclass
class FigmaConfig:
    """Settings that control API access, caching and batching behaviour."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    retry_attempts: int = 3
    retry_backoff: float = 1.0
    cache_ttl: float = 300.0
    cache_max_size: int = 1000
    burst_size: int = 10
    batch_size: int = 10
    batch_delay: float = 0.1

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        api_key: Optional[str] = None,
    ) -> "FigmaConfig":
        env = os.environ if environ is None else environ
        key = api_key or env.get("FIGMA_API_KEY", "")
        if not key:
            raise ConfigError(
                "Figma API key is required. Set FIGMA_API_KEY or pass --figma-api-key."
            )
        return cls(
            api_key=key,
            base_url=env.get("FIGMA_API_BASE_URL", DEFAULT_BASE_URL),
            cache_ttl=_env_int(env, "CACHE_TTL", 300),
            cache_max_size=_env_int(env, "CACHE_MAX_SIZE", 1000),
            burst_size=_env_int(env, "RATE_LIMIT_BURST_SIZE", 10),
        )


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
