import logging

import pytest

from fitquest.core.config import Settings, validate_config


def test_defaults_are_valid():
    cfg = Settings(_env_file=None)

    assert validate_config(strict=True, settings_obj=cfg) is True
    assert cfg.TXN_MAX_ATTEMPTS >= 1
    assert cfg.LEADERBOARD_DEFAULT_LIMIT <= cfg.LEADERBOARD_MAX_LIMIT


def test_strict_mode_rejects_sqlite_in_production():
    cfg = Settings(_env_file=None, ENV="production", DATABASE_URL="sqlite:///./prod.db")

    with pytest.raises(RuntimeError) as exc:
        validate_config(strict=True, settings_obj=cfg)

    assert "SQLite" in str(exc.value)


def test_missing_database_url_warns_when_not_strict(caplog):
    cfg = Settings(_env_file=None, DATABASE_URL=None)
    logger = logging.getLogger("fitquest.test_config")

    with caplog.at_level(logging.WARNING, logger="fitquest.test_config"):
        assert validate_config(strict=False, settings_obj=cfg, logger=logger) is True

    assert "DATABASE_URL" in caplog.text


def test_inverted_retry_window_is_rejected():
    cfg = Settings(_env_file=None, TXN_RETRY_MIN_WAIT_SECONDS=2.0, TXN_RETRY_MAX_WAIT_SECONDS=1.0)

    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=cfg)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("LEADERBOARD_MAX_LIMIT", "25")
    monkeypatch.setenv("CONFIG_STRICT", "true")

    cfg = Settings(_env_file=None)

    assert cfg.LEADERBOARD_MAX_LIMIT == 25
    assert cfg.CONFIG_STRICT is True
