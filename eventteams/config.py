"""Environment-driven settings for the team service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional

from dotenv import load_dotenv

load_dotenv()


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, default))
    except (TypeError, ValueError):
        return default


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(env.get(name, default))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    team_code_prefix: str = "RAIoT"
    tx_max_attempts: int = 8
    tx_backoff_seconds: float = 0.02
    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"
    jwt_expiry_minutes: int = 60
    allowed_origins: tuple[str, ...] = ()

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        raw_origins = env.get("ALLOWED_ORIGINS", "").strip()
        prefix = env.get("TEAM_CODE_PREFIX", "").strip() or cls.team_code_prefix
        return cls(
            team_code_prefix=prefix,
            tx_max_attempts=max(1, _int_env(env, "TEAM_TX_MAX_ATTEMPTS", cls.tx_max_attempts)),
            tx_backoff_seconds=max(
                0.0, _float_env(env, "TEAM_TX_BACKOFF_SECONDS", cls.tx_backoff_seconds)
            ),
            jwt_secret=env.get("JWT_SECRET", cls.jwt_secret),
            jwt_algorithm=env.get("JWT_ALGORITHM", cls.jwt_algorithm),
            jwt_expiry_minutes=_int_env(env, "JWT_EXPIRY_MINUTES", cls.jwt_expiry_minutes),
            allowed_origins=tuple(o.strip() for o in raw_origins.split(",") if o.strip()),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


__all__ = ["Settings", "get_settings"]
