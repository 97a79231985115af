from __future__ import annotations

import pytest

from cohort_engine.core.config import AppEnv, Settings, load_settings

_ENGINE_VARS = (
    "APP_ENV",
    "LOG_LEVEL",
    "LOG_JSON",
    "DEFAULT_TOPIC_MIN_TIME_SECONDS",
    "ENFORCE_TOPIC_MIN_TIME",
    "DEFAULT_MIN_PROGRESS",
    "DEADLINE_BLOCKS_UNLOCK",
    "QUIZ_SUBMIT_GRACE_SECONDS",
    "COINS_PER_LEVEL",
    "COHORT_COMPLETION_BONUS",
    "LEADERBOARD_CACHE_TTL",
    "JWT_PUBLIC_KEY_FILE",
    "JWT_ISSUER",
    "JWT_AUDIENCE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENGINE_VARS:
        monkeypatch.delenv(name, raising=False)


# ---- defaults ----


def test_load_settings_defaults() -> None:
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"
    assert settings.log_json is False


def test_engine_policy_defaults() -> None:
    settings = load_settings()
    assert settings.default_topic_min_time_seconds == 120
    assert settings.enforce_topic_min_time is True
    assert settings.default_min_progress == 90
    assert settings.deadline_blocks_unlock is False
    assert settings.quiz_submit_grace_seconds == 5
    assert settings.coins_per_level == 1000
    assert settings.cohort_completion_bonus == 500
    assert settings.leaderboard_cache_ttl == 60


# ---- env overrides ----


def test_load_settings_normalizes_case_and_whitespace(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "  PROD ")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "debug"


def test_engine_policy_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEFAULT_MIN_PROGRESS", "75")
    monkeypatch.setenv("DEADLINE_BLOCKS_UNLOCK", "yes")
    monkeypatch.setenv("ENFORCE_TOPIC_MIN_TIME", "off")
    monkeypatch.setenv("COINS_PER_LEVEL", "250")
    settings = load_settings()
    assert settings.default_min_progress == 75
    assert settings.deadline_blocks_unlock is True
    assert settings.enforce_topic_min_time is False
    assert settings.coins_per_level == 250


def test_token_issuer_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JWT_ISSUER", "platform-auth")
    monkeypatch.setenv("JWT_PUBLIC_KEY_FILE", "/etc/engine/issuer.pem")
    settings = load_settings()
    assert settings.jwt_issuer == "platform-auth"
    assert settings.jwt_audience == "cohort-engine"
    assert settings.jwt_public_key_file == "/etc/engine/issuer.pem"


# ---- invalid values ----


def test_load_settings_rejects_invalid_app_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "staging")
    with pytest.raises(ValueError, match="APP_ENV must be dev|test|prod"):
        load_settings()


def test_load_settings_rejects_invalid_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with pytest.raises(ValueError, match="LOG_LEVEL must be"):
        load_settings()


def test_rejects_non_integer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUIZ_SUBMIT_GRACE_SECONDS", "five")
    with pytest.raises(ValueError, match="QUIZ_SUBMIT_GRACE_SECONDS must be an integer"):
        load_settings()


def test_rejects_negative_integer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COHORT_COMPLETION_BONUS", "-1")
    with pytest.raises(ValueError, match="COHORT_COMPLETION_BONUS must be >= 0"):
        load_settings()


def test_rejects_zero_coins_per_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COINS_PER_LEVEL", "0")
    with pytest.raises(ValueError, match="COINS_PER_LEVEL must be >= 1"):
        load_settings()


def test_rejects_min_progress_over_100(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEFAULT_MIN_PROGRESS", "101")
    with pytest.raises(ValueError, match="DEFAULT_MIN_PROGRESS must be between 0 and 100"):
        load_settings()


def test_rejects_bad_boolean(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_JSON", "maybe")
    with pytest.raises(ValueError, match="LOG_JSON must be true|false"):
        load_settings()


# ---- Settings properties ----


def _make_settings(app_env: AppEnv = "dev") -> Settings:
    return Settings(  # type: ignore[arg-type]
        app_env=app_env,
        log_level="info",
        log_json=False,
        port=8000,
        database_url=None,
        redis_url=None,
    )


@pytest.mark.parametrize(
    ("app_env", "dev", "test", "prod"),
    [("dev", True, False, False), ("test", False, True, False), ("prod", False, False, True)],
)
def test_settings_env_flags(app_env: AppEnv, dev: bool, test: bool, prod: bool) -> None:
    s = _make_settings(app_env)
    assert (s.is_dev, s.is_test, s.is_prod) == (dev, test, prod)


def test_settings_is_frozen() -> None:
    s = _make_settings()
    with pytest.raises(AttributeError):
        s.default_min_progress = 10  # type: ignore[misc]
