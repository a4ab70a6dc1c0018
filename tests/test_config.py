"""Tests for configuration loading, validation and duration parsing."""

import warnings

import pytest

from notifier.config import (
    AppConfig,
    ConfigurationError,
    QueueConfig,
    RetentionConfig,
    load_config,
    load_environment_config,
    parse_config,
)
from notifier.config.duration import (
    DurationParseError,
    humanize_seconds,
    parse_duration,
    validate_duration_range,
)
from notifier.config.environment import DEFAULT_DATABASE_URL, EnvironmentConfig
from notifier.config.validators import check_for_warnings


class TestDurationParsing:
    """Tests for human-readable and ISO-8601 durations."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("30s", 30),
            ("1m", 60),
            ("15m", 900),
            ("1h30m", 5400),
            ("7d", 604800),
            ("PT1M", 60),
            ("PT1H30M", 5400),
            ("P7D", 604800),
            ("pt30s", 30),
        ],
    )
    def test_valid_durations(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "   ", "abc", "10x", "1m garbage", "P", "PT"])
    def test_invalid_durations(self, value):
        with pytest.raises(DurationParseError):
            parse_duration(value)

    def test_zero_duration_rejected(self):
        with pytest.raises(DurationParseError, match="zero"):
            parse_duration("0m")

    def test_non_string_rejected(self):
        with pytest.raises(DurationParseError, match="must be a string"):
            parse_duration(60)

    def test_range_validation_uses_label(self):
        with pytest.raises(DurationParseError, match="Poll interval too short"):
            validate_duration_range(5, min_seconds=10, max_seconds=3600, label="Poll interval")

        with pytest.raises(DurationParseError, match="too long"):
            validate_duration_range(7200, min_seconds=10, max_seconds=3600)

        validate_duration_range(60, min_seconds=10, max_seconds=3600)

    def test_humanize_seconds(self):
        assert humanize_seconds(1) == "1 second"
        assert humanize_seconds(900) == "15 minutes"
        assert humanize_seconds(3600) == "1 hour"
        assert humanize_seconds(604800) == "7 days"


class TestConfigModels:
    """Tests for the pydantic configuration schema."""

    def test_defaults(self):
        config = AppConfig()

        assert config.queue.batch_size == 50
        assert config.queue.max_retries == 3
        assert config.queue.max_concurrency == 5
        assert config.queue.poll_interval_seconds == 60
        assert config.queue.stale_claim_timeout_seconds == 900
        assert config.queue.backoff_base_seconds == 60
        assert config.queue.backoff_max_seconds == 86400
        assert config.retention.days_to_keep == 30
        assert config.retention.cleanup_interval_seconds == 7 * 86400
        assert config.email.use_tls is True
        assert config.app.app_url == "http://localhost:3000"

    def test_broadcast_defaults_are_opt_in_for_email_and_push(self):
        prefs = AppConfig().preferences

        assert prefs.broadcast.email is False
        assert prefs.broadcast.push is False
        assert prefs.broadcast.in_app is True
        assert prefs.transactional.email is True
        assert prefs.transactional.push is True

    def test_poll_interval_bounds(self):
        with pytest.raises(ValueError, match="Poll interval too short"):
            QueueConfig(poll_interval="5s")
        with pytest.raises(ValueError, match="Poll interval too long"):
            QueueConfig(poll_interval="2h")

    def test_max_retries_bounds(self):
        with pytest.raises(ValueError):
            QueueConfig(max_retries=0)
        with pytest.raises(ValueError):
            QueueConfig(max_retries=11)

    def test_backoff_max_must_not_be_below_base(self):
        with pytest.raises(ValueError, match="backoff_max_seconds"):
            QueueConfig(backoff_base_seconds=600, backoff_max_seconds=300)

    def test_cleanup_interval_bounds(self):
        with pytest.raises(ValueError, match="Cleanup interval too short"):
            RetentionConfig(cleanup_interval="10m")

    def test_app_url_trailing_slash_stripped(self):
        config = parse_config({"app": {"app_url": "https://app.example.com/"}})
        assert config.app.app_url == "https://app.example.com"


class TestParseConfig:
    """Tests for raw mapping validation."""

    def test_empty_file_gives_defaults(self):
        assert parse_config(None) == AppConfig()

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationError, match="mapping at the top level"):
            parse_config(["queue"])

    def test_errors_are_readable(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"queue": {"batch_size": "lots", "poll_interval": "1s"}})

        error = exc_info.value
        assert any("batch_size" in e and "Invalid type" in e for e in error.errors)
        assert any("poll_interval" in e for e in error.errors)
        assert "Suggestions:" in str(error)

    def test_partial_sections(self):
        config = parse_config({"queue": {"batch_size": 10}, "retention": {"days_to_keep": 7}})

        assert config.queue.batch_size == 10
        assert config.queue.max_retries == 3
        assert config.retention.days_to_keep == 7


class TestLoadConfig:
    """Tests for file discovery and environment handling."""

    def test_load_explicit_path(self, tmp_path, mock_env_vars):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            """
queue:
  batch_size: 20
  poll_interval: "30s"
  max_concurrency: 4
retention:
  days_to_keep: 14
app:
  app_name: "Referral Network"
  app_url: "https://referrals.example.com"
logging:
  level: DEBUG
  format: json
"""
        )

        app_config, env_config = load_config(config_file)

        assert app_config.queue.batch_size == 20
        assert app_config.queue.poll_interval_seconds == 30
        assert app_config.retention.days_to_keep == 14
        assert app_config.logging.format == "json"
        assert env_config.smtp_host == "smtp.test.com"
        assert env_config.smtp_port == 587

    def test_missing_explicit_path(self, tmp_path, mock_env_vars):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_falls_back_to_config_directory(self, tmp_path, monkeypatch, mock_env_vars):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "config.yaml").write_text("queue:\n  batch_size: 7\n")
        monkeypatch.chdir(tmp_path)

        app_config, _ = load_config()

        assert app_config.queue.batch_size == 7

    def test_no_config_file_anywhere(self, tmp_path, monkeypatch, mock_env_vars):
        monkeypatch.chdir(tmp_path)

        with pytest.raises(ConfigurationError) as exc_info:
            load_config()

        assert "Tried: config.yaml" in exc_info.value.errors

    def test_invalid_yaml(self, tmp_path, mock_env_vars):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("queue: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_config(config_file)

    def test_app_url_env_override(self, tmp_path, monkeypatch, mock_env_vars):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("app:\n  app_url: https://file.example.com\n")
        monkeypatch.setenv("APP_URL", "https://env.example.com/")

        app_config, _ = load_config(config_file)

        assert app_config.app.app_url == "https://env.example.com"


class TestEnvironmentConfig:
    """Tests for environment variable validation."""

    def test_required_variables(self, monkeypatch):
        monkeypatch.delenv("SMTP_HOST", raising=False)
        monkeypatch.delenv("SMTP_PORT", raising=False)

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        errors = exc_info.value.errors
        assert "Missing required environment variable: SMTP_HOST" in errors
        assert "Missing required environment variable: SMTP_PORT" in errors

    def test_invalid_port(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("SMTP_PORT", "70000")
        with pytest.raises(ConfigurationError, match="Must be between 1 and 65535"):
            load_environment_config()

        monkeypatch.setenv("SMTP_PORT", "smtp")
        with pytest.raises(ConfigurationError, match="valid integer"):
            load_environment_config()

    def test_credentials_must_come_in_pairs(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("SMTP_USER", "user@test.com")
        with pytest.raises(ConfigurationError, match="SMTP_PASS is not"):
            load_environment_config()

    def test_invalid_sender_address(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("EMAIL_SENDER_ADDRESS", "not-an-address")
        with pytest.raises(ConfigurationError, match="EMAIL_SENDER_ADDRESS"):
            load_environment_config()

    def test_invalid_log_level(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        with pytest.raises(ConfigurationError, match="Invalid LOG_LEVEL"):
            load_environment_config()

    def test_defaults(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")

        env = load_environment_config()

        assert env.database_url == DEFAULT_DATABASE_URL
        assert env.log_level == "DEBUG"
        assert env.smtp_sender_name == "Referral Network"
        assert env.sender_address == "notifications@smtp.test.com"

    def test_sender_address_falls_back_to_smtp_user(self):
        env = EnvironmentConfig(
            smtp_host="smtp.test.com", smtp_port=587, smtp_user="bot@test.com", smtp_pass="x"
        )
        assert env.sender_address == "bot@test.com"


class TestConfigWarnings:
    """Tests for soft warnings on risky settings."""

    def test_sensible_config_has_no_warnings(self):
        assert check_for_warnings(AppConfig()) == []

    def test_short_poll_interval(self):
        config = parse_config({"queue": {"poll_interval": "15s"}})
        assert any("poll_interval" in w for w in check_for_warnings(config))

    def test_batch_much_larger_than_concurrency(self):
        config = parse_config({"queue": {"batch_size": 500, "max_concurrency": 2}})
        assert any("batch_size" in w for w in check_for_warnings(config))

    def test_short_retention(self):
        config = parse_config({"retention": {"days_to_keep": 1}})
        assert any("retention" in w for w in check_for_warnings(config))

    def test_stale_timeout_close_to_smtp_timeout(self):
        config = parse_config({"queue": {"stale_claim_timeout": "1m"}, "email": {"timeout_seconds": 60}})
        assert any("stale_claim_timeout" in w for w in check_for_warnings(config))

    def test_load_config_emits_warnings(self, tmp_path, mock_env_vars):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("retention:\n  days_to_keep: 1\n")

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            load_config(config_file)

        assert any("retention" in str(w.message) for w in caught)
