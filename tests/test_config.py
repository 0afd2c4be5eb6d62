"""Tests for environment-driven settings."""

from syncxo.config import DEFAULT_ROOM_TTL_SECONDS, Settings


def test_defaults_without_environment():
    settings = Settings.from_env({})
    assert settings.port == 8000
    assert settings.room_ttl_seconds == DEFAULT_ROOM_TTL_SECONDS
    assert settings.log_level == "INFO"


def test_environment_overrides():
    settings = Settings.from_env(
        {
            "SYNCXO_PORT": "9000",
            "SYNCXO_LOG_LEVEL": "debug",
            "SYNCXO_ROOM_TTL_SECONDS": "120",
            "SYNCXO_AI_THINK_DELAY": "0",
        }
    )
    assert settings.port == 9000
    assert settings.log_level == "DEBUG"
    assert settings.room_ttl_seconds == 120.0
    assert settings.ai_think_delay == 0.0
