"""Tests for configuration loading, durations and environment settings."""

import warnings
from pathlib import Path

import pytest

from scheme_engine.config import (
    AppConfig,
    ConfigurationError,
    ScoringWeights,
    SyncSettings,
    load_config,
    validate_config_file,
)
from scheme_engine.config.duration import DurationParseError, humanize_seconds, parse_duration
from scheme_engine.config.environment import DEFAULT_DATABASE_URL, load_environment_config
from scheme_engine.config.validators import check_for_warnings
from scheme_engine.domain.models import SchemeLevel

MINIMAL_CONFIG = """
authority:
  base_url: https://schemes.example.gov.in/api
"""

FULL_CONFIG = """
authority:
  base_url: https://schemes.example.gov.in/api/
  timeout: 10
sync:
  interval: PT30M
  max_attempts: 3
  initial_delay_seconds: 0.5
scoring:
  mandatory_match: 2.0
  level_tiers:
    central: 3.0
    state: 2.0
    district: 1.0
matching:
  cache_size: 0
notifications:
  batch_size: 50
  reminder_threshold: 3d
  reminder_interval: 12h
profiles_file: profiles.yaml
logging:
  level: DEBUG
  format: json
"""


@pytest.fixture
def clean_env(monkeypatch):
    """Unset every environment variable the loader reads."""
    for name in ("DATABASE_URL", "LOG_LEVEL", "AUTHORITY_API_TOKEN", "ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)


def write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestConfigurationLoading:
    """Test configuration loading from YAML files."""

    def test_minimal_config_applies_defaults(self, tmp_path, clean_env):
        app_config, env_config = load_config(write_config(tmp_path, MINIMAL_CONFIG))

        assert app_config.authority.base_url == "https://schemes.example.gov.in/api"
        assert app_config.sync.interval_seconds == 900
        assert app_config.sync.max_attempts == 4
        assert app_config.matching.cache_size == 1024
        assert app_config.notifications.reminder_threshold_days == 7
        assert app_config.notifications.reminder_interval_seconds == 86400
        assert app_config.profiles_file is None
        assert env_config.database_url == DEFAULT_DATABASE_URL

    def test_full_config(self, tmp_path, clean_env):
        app_config, _ = load_config(write_config(tmp_path, FULL_CONFIG))

        assert app_config.authority.base_url == "https://schemes.example.gov.in/api"
        assert app_config.authority.timeout == 10
        assert app_config.sync.interval_seconds == 1800
        assert app_config.scoring.mandatory_match == 2.0
        assert app_config.scoring.level_tiers[SchemeLevel.STATE] == 2.0
        assert app_config.matching.cache_size == 0
        assert app_config.notifications.batch_size == 50
        assert app_config.notifications.reminder_threshold_days == 3
        assert app_config.notifications.reminder_interval_seconds == 43200
        assert app_config.profiles_file == Path("profiles.yaml")
        assert app_config.logging.level == "DEBUG"
        assert app_config.logging.format == "json"

    def test_file_not_found(self, clean_env):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(Path("nonexistent.yaml"))

        assert "not found" in str(exc_info.value)

    def test_empty_file(self, tmp_path, clean_env):
        with pytest.raises(ConfigurationError, match="empty"):
            load_config(write_config(tmp_path, ""))

    def test_invalid_yaml(self, tmp_path, clean_env):
        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_config(write_config(tmp_path, "authority: [unclosed"))

    def test_missing_authority_reports_field(self, tmp_path, clean_env):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(write_config(tmp_path, "sync:\n  interval: 15m\n"))

        assert "Missing required field: authority" in exc_info.value.errors

    def test_collects_every_error(self, tmp_path, clean_env):
        content = MINIMAL_CONFIG + "sync:\n  interval: 10s\n  max_attempts: 0\n"

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(write_config(tmp_path, content))

        assert len(exc_info.value.errors) >= 1
        assert "Suggestions" in str(exc_info.value)

    def test_rejects_non_http_base_url(self, tmp_path, clean_env):
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path, "authority:\n  base_url: ftp://example.org\n"))

    def test_plain_http_warns(self, tmp_path, clean_env):
        path = write_config(tmp_path, "authority:\n  base_url: http://localhost:8080\n")

        with pytest.warns(UserWarning, match="plain HTTP"):
            load_config(path)

    def test_finds_config_in_config_directory(self, tmp_path, monkeypatch, clean_env):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "config.yaml").write_text(MINIMAL_CONFIG, encoding="utf-8")
        monkeypatch.chdir(tmp_path)

        app_config, _ = load_config()

        assert app_config.authority.base_url.startswith("https://")

    def test_validate_config_file(self, tmp_path, capsys):
        assert validate_config_file(write_config(tmp_path, MINIMAL_CONFIG)) is True
        assert "is valid" in capsys.readouterr().out

        bad = tmp_path / "bad.yaml"
        bad.write_text("sync:\n  interval: 15m\n", encoding="utf-8")
        assert validate_config_file(bad) is False


class TestModels:
    """Tests for individual configuration models."""

    def test_retry_delay_backoff_is_capped(self):
        settings = SyncSettings(initial_delay_seconds=1.0, backoff_multiplier=2.0, max_delay_seconds=5.0)

        assert settings.retry_delay(1) == 1.0
        assert settings.retry_delay(2) == 2.0
        assert settings.retry_delay(3) == 4.0
        assert settings.retry_delay(4) == 5.0

    def test_sync_interval_range(self):
        with pytest.raises(ValueError):
            SyncSettings(interval="30s")
        with pytest.raises(ValueError):
            SyncSettings(interval="2d")

    def test_level_tiers_must_not_increase(self):
        with pytest.raises(ValueError, match="central >= state >= district"):
            ScoringWeights(level_tiers={"central": 1.0, "state": 2.0, "district": 0.5})

    def test_level_tiers_must_be_complete(self):
        with pytest.raises(ValueError, match="missing"):
            ScoringWeights(level_tiers={"central": 1.0})

    def test_app_config_requires_authority(self):
        with pytest.raises(ValueError):
            AppConfig.model_validate({})


class TestDuration:
    """Tests for duration parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [("15m", 900), ("1h30m", 5400), ("7d", 604800), ("PT15M", 900), ("P1DT1H", 90000), (" 2 h ", 7200)],
    )
    def test_valid_durations(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "15", "15x", "PT", "m15", "0m"])
    def test_invalid_durations(self, value):
        with pytest.raises(DurationParseError):
            parse_duration(value)

    def test_humanize_seconds(self):
        assert humanize_seconds(900) == "15 minutes"
        assert humanize_seconds(86400) == "1 day"
        assert humanize_seconds(1) == "1 second"


class TestEnvironment:
    """Tests for environment variable loading."""

    def test_defaults(self, clean_env):
        env = load_environment_config()

        assert env.database_url == DEFAULT_DATABASE_URL
        assert env.log_level is None
        assert env.authority_api_token is None
        assert env.environment == "local"

    def test_values_read(self, monkeypatch, clean_env):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///./test.db")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("AUTHORITY_API_TOKEN", " secret ")
        monkeypatch.setenv("ENVIRONMENT", "staging")

        env = load_environment_config()

        assert env.database_url == "sqlite:///./test.db"
        assert env.log_level == "DEBUG"
        assert env.authority_api_token == "secret"
        assert env.environment == "staging"

    def test_invalid_values_collected(self, monkeypatch, clean_env):
        monkeypatch.setenv("DATABASE_URL", "not-a-url")
        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        monkeypatch.setenv("AUTHORITY_API_TOKEN", "   ")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert len(exc_info.value.errors) == 3


class TestWarnings:
    """Tests for soft configuration checks."""

    def test_no_warnings_for_sane_config(self):
        assert check_for_warnings({"authority": {"base_url": "https://x"}}) == []

    def test_single_attempt_warns(self):
        messages = check_for_warnings({"sync": {"max_attempts": 1}})

        assert any("max_attempts is 1" in m for m in messages)

    def test_zero_weights_warn(self):
        scoring = {"mandatory_match": 0, "optional_match": 0, "benefit_tier": 0, "freshness": 0.0}

        assert any("zero" in m for m in check_for_warnings({"scoring": scoring}))

    def test_large_batch_warns(self):
        assert check_for_warnings({"notifications": {"batch_size": 20000}})
