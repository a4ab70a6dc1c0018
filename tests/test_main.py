"""Tests for the command-line entry point."""

import json
from unittest.mock import Mock, patch

import pytest

from notifier import main as cli
from notifier.config.environment import EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.config.models import AppConfig, LoggingConfig
from notifier.domain.models import QueueStatus
from notifier.processing import ProcessResult, QueueStats


def _configs(log_level=None, config_level="INFO"):
    app_config = AppConfig(logging=LoggingConfig(level=config_level))
    env_config = EnvironmentConfig(smtp_host="smtp.test.com", smtp_port=587, log_level=log_level)
    return app_config, env_config


@pytest.fixture
def processor():
    return Mock()


@pytest.fixture
def wired(processor):
    """Patch configuration, database and processor wiring."""
    with patch.object(cli, "load_config", return_value=_configs()) as load_config, \
            patch.object(cli, "configure_logging") as configure_logging, \
            patch.object(cli, "init_database") as init_database, \
            patch.object(cli, "close_database") as close_database, \
            patch.object(cli, "build_processor", return_value=processor):
        yield {
            "load_config": load_config,
            "configure_logging": configure_logging,
            "init_database": init_database,
            "close_database": close_database,
        }


class TestLoadRuntimeConfig:
    def test_cli_level_wins(self):
        with patch.object(cli, "load_config", return_value=_configs(log_level="ERROR")):
            _, env_config = cli.load_runtime_config(None, "DEBUG")
        assert env_config.log_level == "DEBUG"

    def test_environment_beats_config_file(self):
        with patch.object(cli, "load_config", return_value=_configs(log_level="ERROR", config_level="WARNING")):
            _, env_config = cli.load_runtime_config(None, None)
        assert env_config.log_level == "ERROR"

    def test_config_file_level_used_last(self):
        with patch.object(cli, "load_config", return_value=_configs(config_level="WARNING")):
            _, env_config = cli.load_runtime_config(None, None)
        assert env_config.log_level == "WARNING"


class TestParser:
    def test_modes_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--once", "--stats"])

    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.config is None
        assert not (args.once or args.stats or args.purge)


class TestMain:
    def test_once_success(self, wired, processor):
        processor.run_once.return_value = ProcessResult(run_id="r1", processed=2, sent=2)

        assert cli.main(["--once"]) == 0

        wired["init_database"].assert_called_once_with("sqlite:///./data/notifications.db")
        wired["close_database"].assert_called_once()
        processor.run_once.assert_called_once()

    def test_once_with_failures_exits_non_zero(self, wired, processor):
        processor.run_once.return_value = ProcessResult(run_id="r1", processed=1, failed=1)

        assert cli.main(["--once"]) == 1

    def test_stats_prints_json(self, wired, processor, capsys):
        processor.get_stats.return_value = QueueStats(
            window_days=7, counts={QueueStatus.PENDING: 3, QueueStatus.SENT: 5}
        )

        assert cli.main(["--stats"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["pending"] == 3
        assert output["sent"] == 5
        assert output["failed"] == 0
        assert output["total"] == 8

    def test_purge_prints_deletions(self, wired, processor, capsys):
        processor.run_maintenance.return_value = {"notification_queue": 4}

        assert cli.main(["--purge"]) == 0

        assert json.loads(capsys.readouterr().out) == {"notification_queue": 4}

    def test_log_level_passed_to_logging(self, wired, processor):
        processor.run_once.return_value = ProcessResult()

        cli.main(["--once", "--log-level", "DEBUG"])

        assert wired["configure_logging"].call_args.kwargs["level"] == "DEBUG"

    def test_configuration_error(self, wired, capsys):
        wired["load_config"].side_effect = ConfigurationError(
            "Environment variable validation failed",
            errors=["Missing required environment variable: SMTP_HOST"],
        )

        assert cli.main(["--once"]) == 1

        err = capsys.readouterr().err
        assert "Configuration Error" in err
        assert "SMTP_HOST" in err
        wired["init_database"].assert_not_called()

    def test_unexpected_error(self, wired, processor, capsys):
        processor.run_once.side_effect = RuntimeError("boom")

        assert cli.main(["--once"]) == 1

        assert "Fatal error: boom" in capsys.readouterr().err
        wired["close_database"].assert_called_once()

    def test_daemon_mode(self, wired, processor):
        with patch.object(cli, "run_daemon", return_value=0) as run_daemon:
            assert cli.main([]) == 0

        run_daemon.assert_called_once()
        assert run_daemon.call_args.args[0] is processor
