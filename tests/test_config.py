"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from limiter.core.config import LimiterSettings, RedisSettings


def test_limiter_settings_read_prefixed_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LIMITER_DEFAULT_LIMIT", "10")
    monkeypatch.setenv("LIMITER_USE_LOCAL_FALLBACK", "true")
    monkeypatch.setenv("LIMITER_KEY_PREFIX", "quota")

    cfg = LimiterSettings()

    assert cfg.default_limit == 10
    assert cfg.use_local_fallback is True
    assert cfg.key_prefix == "quota"


def test_limiter_settings_reject_non_positive_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LIMITER_DEFAULT_LIMIT", "0")

    with pytest.raises(ValidationError):
        LimiterSettings()


def test_redis_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("REDIS_URL", "REDIS_HOST", "REDIS_PORT", "REDIS_PASSWORD"):
        monkeypatch.delenv(name, raising=False)

    cfg = RedisSettings()

    assert cfg.url is None
    assert (cfg.host, cfg.port, cfg.db) == ("localhost", 6379, 0)
    assert cfg.retry_attempts == 3
