from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

DEFAULT_TICK_RATE_HZ = 60.0


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/countdowns.db'
    - STORAGE_KEY: key the countdown list is stored under. Default 'SavedCountdowns'
    - TICK_RATE_HZ: change notifications per second while a countdown is active. Default 60
    - SEED_EXAMPLES: 'false' to start empty instead of seeding example countdowns
    - LOG_LEVEL: logging level name. Default 'INFO'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    """

    persistence_backend: str
    sqlite_db_path: str
    storage_key: str
    tick_rate_hz: float
    seed_examples: bool
    log_level: str
    cors_allow_origins: List[str]

    @property
    def tick_interval(self) -> float:
        return 1.0 / self.tick_rate_hz


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_rate(value: str) -> float:
    try:
        rate = float(value)
    except ValueError:
        return DEFAULT_TICK_RATE_HZ
    return rate if rate > 0 else DEFAULT_TICK_RATE_HZ


def _parse_origins(origins_value: str) -> List[str]:
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        backend = "memory"

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./data/countdowns.db").strip(),
        storage_key=_get_env("STORAGE_KEY", "SavedCountdowns").strip(),
        tick_rate_hz=_parse_rate(_get_env("TICK_RATE_HZ", str(DEFAULT_TICK_RATE_HZ))),
        seed_examples=_parse_bool(_get_env("SEED_EXAMPLES", "true"), True),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
    )
