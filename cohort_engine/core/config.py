from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so casting and validation live in one place
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{name} must be true|false (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    jwt_public_key_file: str | None = None
    jwt_issuer: str = "cohort-engine"
    jwt_audience: str = "cohort-engine"

    # Engine policy
    default_topic_min_time_seconds: int = 120
    enforce_topic_min_time: bool = True
    default_min_progress: int = 90
    deadline_blocks_unlock: bool = False
    quiz_submit_grace_seconds: int = 5
    coins_per_level: int = 1000
    cohort_completion_bonus: int = 500
    leaderboard_cache_ttl: int = 60

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    default_min_progress = _getint("DEFAULT_MIN_PROGRESS", 90)
    if default_min_progress > 100:
        raise ValueError(
            f"DEFAULT_MIN_PROGRESS must be between 0 and 100 (got {default_min_progress})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        port=_getint("PORT", 8000, minimum=1),
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        jwt_public_key_file=_getenv("JWT_PUBLIC_KEY_FILE", "") or None,
        jwt_issuer=_getenv("JWT_ISSUER", "cohort-engine"),
        jwt_audience=_getenv("JWT_AUDIENCE", "cohort-engine"),
        default_topic_min_time_seconds=_getint("DEFAULT_TOPIC_MIN_TIME_SECONDS", 120),
        enforce_topic_min_time=_getbool("ENFORCE_TOPIC_MIN_TIME", True),
        default_min_progress=default_min_progress,
        deadline_blocks_unlock=_getbool("DEADLINE_BLOCKS_UNLOCK", False),
        quiz_submit_grace_seconds=_getint("QUIZ_SUBMIT_GRACE_SECONDS", 5),
        coins_per_level=_getint("COINS_PER_LEVEL", 1000, minimum=1),
        cohort_completion_bonus=_getint("COHORT_COMPLETION_BONUS", 500),
        leaderboard_cache_ttl=_getint("LEADERBOARD_CACHE_TTL", 60, minimum=1),
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
