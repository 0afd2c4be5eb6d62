"""Runtime settings read from ``SYNCXO_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_ROOM_TTL_SECONDS = 60 * 60  # 1 hour without activity
DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 5
DEFAULT_AI_THINK_DELAY = 0.5


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    room_ttl_seconds: float = DEFAULT_ROOM_TTL_SECONDS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    ai_think_delay: float = DEFAULT_AI_THINK_DELAY

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("SYNCXO_HOST", "0.0.0.0"),
            port=int(env.get("SYNCXO_PORT", "8000")),
            log_level=env.get("SYNCXO_LOG_LEVEL", "INFO").upper(),
            room_ttl_seconds=float(
                env.get("SYNCXO_ROOM_TTL_SECONDS", DEFAULT_ROOM_TTL_SECONDS)
            ),
            sweep_interval_seconds=float(
                env.get("SYNCXO_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS)
            ),
            ai_think_delay=float(
                env.get("SYNCXO_AI_THINK_DELAY", DEFAULT_AI_THINK_DELAY)
            ),
        )
