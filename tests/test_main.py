"""Unit tests for the main entry point.

Covers:
- Log level priority (CLI > env > config)
- Pipeline wiring
- Manual run vs daemon mode and exit codes
- --check-config
- Error handling
"""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from scheme_engine.config.environment import EnvironmentConfig
from scheme_engine.config.exceptions import ConfigurationError
from scheme_engine.config.models import AppConfig, LoggingConfig
from scheme_engine.corpus import SchemeCorpus, SqlCorpusStore
from scheme_engine.main import build_pipeline, load_runtime_config, main
from scheme_engine.notifications import StaticProfileSource, TriggerReport, YamlProfileSource
from scheme_engine.persistence import DatabaseConnectionError
from scheme_engine.pipeline import PipelineRunResult, SyncPipeline
from scheme_engine.sync import SyncOutcome, SyncResult
from tests.helpers import add_delta, senior_scheme


@pytest.fixture
def app_config():
    return AppConfig(
        authority={"base_url": "https://schemes.example.gov/api"},
        logging=LoggingConfig(level="WARNING", format="json"),
    )


@pytest.fixture
def env_config():
    return EnvironmentConfig(log_level="INFO", environment="test")


def run_result(had_errors=False):
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    outcome = SyncOutcome.STALE if had_errors else SyncOutcome.APPLIED
    return PipelineRunResult(
        run_id="run-1",
        run_started_at=now,
        run_finished_at=now,
        sync_result=SyncResult(outcome=outcome, corpus_version=1),
        trigger_report=TriggerReport(),
    )


class TestLoadRuntimeConfig:
    """Test suite for load_runtime_config."""

    def test_log_level_priority(self, app_config, env_config, tmp_path):
        with patch("scheme_engine.main.load_config") as mock_load:
            mock_load.return_value = (app_config, env_config)

            # CLI override takes precedence
            _, resolved = load_runtime_config(tmp_path / "config.yaml", "DEBUG")
            assert resolved.log_level == "DEBUG"

        with patch("scheme_engine.main.load_config") as mock_load:
            env_config.log_level = "ERROR"
            mock_load.return_value = (app_config, env_config)

            # Environment beats the config file
            _, resolved = load_runtime_config(None, None)
            assert resolved.log_level == "ERROR"

        with patch("scheme_engine.main.load_config") as mock_load:
            env_config.log_level = None
            mock_load.return_value = (app_config, env_config)

            # Config file value used when nothing overrides it
            _, resolved = load_runtime_config(None, None)
            assert resolved.log_level == "WARNING"

    def test_configuration_error_propagates(self):
        with patch("scheme_engine.main.load_config", side_effect=ConfigurationError("bad")):
            with pytest.raises(ConfigurationError):
                load_runtime_config(None, None)


class TestBuildPipeline:
    """Test suite for build_pipeline wiring."""

    def test_wires_components(self, database, app_config, env_config):
        pipeline = build_pipeline(app_config, env_config)

        assert isinstance(pipeline, SyncPipeline)
        assert pipeline.sync_engine.authority.name == "https://schemes.example.gov/api"
        assert pipeline.sync_engine.persist_status is True
        assert pipeline.trigger.corpus is pipeline.sync_engine.corpus
        assert isinstance(pipeline.trigger.profiles, StaticProfileSource)

    def test_profiles_file_selects_yaml_source(self, database, env_config, tmp_path):
        profiles_file = tmp_path / "profiles.yaml"
        profiles_file.write_text("profiles: []\n")
        app_config = AppConfig(
            authority={"base_url": "https://schemes.example.gov"},
            profiles_file=profiles_file,
        )

        pipeline = build_pipeline(app_config, env_config)

        assert isinstance(pipeline.trigger.profiles, YamlProfileSource)
        assert pipeline.trigger.profiles.path == profiles_file

    def test_api_token_sent_as_bearer(self, database, app_config):
        env_config = EnvironmentConfig(authority_api_token="secret")

        pipeline = build_pipeline(app_config, env_config)

        headers = pipeline.sync_engine.authority._session.headers
        assert headers["Authorization"] == "Bearer secret"

    def test_replays_events_left_by_previous_process(self, database, app_config, env_config):
        SchemeCorpus(store=SqlCorpusStore()).apply_delta(add_delta(senior_scheme()))

        pipeline = build_pipeline(app_config, env_config)

        assert pipeline.trigger.process_pending().events_processed == 1


class TestMain:
    """Test suite for main()."""

    @patch("scheme_engine.main.build_pipeline")
    @patch("scheme_engine.main.init_database")
    @patch("scheme_engine.main.close_database")
    @patch("scheme_engine.main.configure_logging")
    @patch("scheme_engine.main.load_runtime_config")
    @patch("sys.argv", ["scheme-engine", "--manual-run", "--config", "config.yaml"])
    def test_manual_run_success(
        self,
        mock_load_config,
        mock_configure_logging,
        mock_close_db,
        mock_init_db,
        mock_build_pipeline,
        app_config,
        env_config,
    ):
        mock_load_config.return_value = (app_config, env_config)
        pipeline = Mock()
        pipeline.run_once.return_value = run_result()
        pipeline.run_reminders.return_value = TriggerReport(sent_count=2)
        mock_build_pipeline.return_value = pipeline

        exit_code = main()

        assert exit_code == 0
        mock_configure_logging.assert_called_once_with(
            level="INFO", format_type="json", environment="test"
        )
        mock_init_db.assert_called_once_with(env_config.database_url)
        mock_close_db.assert_called_once()
        pipeline.run_once.assert_called_once()
        pipeline.run_reminders.assert_called_once()

    @patch("scheme_engine.main.build_pipeline")
    @patch("scheme_engine.main.init_database")
    @patch("scheme_engine.main.close_database")
    @patch("scheme_engine.main.configure_logging")
    @patch("scheme_engine.main.load_runtime_config")
    @patch("sys.argv", ["scheme-engine", "--manual-run"])
    def test_manual_run_with_errors(
        self,
        mock_load_config,
        mock_configure_logging,
        mock_close_db,
        mock_init_db,
        mock_build_pipeline,
        app_config,
        env_config,
    ):
        mock_load_config.return_value = (app_config, env_config)
        pipeline = Mock()
        pipeline.run_once.return_value = run_result(had_errors=True)
        pipeline.run_reminders.return_value = TriggerReport()
        mock_build_pipeline.return_value = pipeline

        assert main() == 1

    @patch("scheme_engine.main.SchedulerService")
    @patch("scheme_engine.main.build_pipeline")
    @patch("scheme_engine.main.init_database")
    @patch("scheme_engine.main.close_database")
    @patch("scheme_engine.main.configure_logging")
    @patch("scheme_engine.main.load_runtime_config")
    @patch("signal.signal")
    @patch("sys.argv", ["scheme-engine"])
    def test_daemon_mode(
        self,
        mock_signal,
        mock_load_config,
        mock_configure_logging,
        mock_close_db,
        mock_init_db,
        mock_build_pipeline,
        mock_scheduler_service,
        app_config,
        env_config,
    ):
        mock_load_config.return_value = (app_config, env_config)
        pipeline = Mock()
        mock_build_pipeline.return_value = pipeline
        scheduler = Mock()
        mock_scheduler_service.return_value = scheduler

        def start_then_stop():
            # Shutdown arrives as soon as the scheduler starts
            mock_scheduler_service.call_args.kwargs["shutdown_event"].set()

        scheduler.start.side_effect = start_then_stop

        exit_code = main()

        assert exit_code == 0
        kwargs = mock_scheduler_service.call_args.kwargs
        assert kwargs["sync_callable"] is pipeline.run_once
        assert kwargs["reminder_callable"] is pipeline.run_reminders
        assert kwargs["sync_interval_seconds"] == 900
        assert kwargs["reminder_interval_seconds"] == 86400
        assert mock_signal.call_count == 2
        mock_close_db.assert_called_once()

    @patch("scheme_engine.main.load_runtime_config")
    @patch("sys.argv", ["scheme-engine", "--config", "nonexistent.yaml"])
    def test_configuration_error(self, mock_load_config, capsys):
        mock_load_config.side_effect = ConfigurationError(
            "Config file not found", suggestions=["Create config.yaml"]
        )

        assert main() == 1
        assert "Configuration Error" in capsys.readouterr().err

    @patch("scheme_engine.main.init_database")
    @patch("scheme_engine.main.configure_logging")
    @patch("scheme_engine.main.load_runtime_config")
    @patch("sys.argv", ["scheme-engine", "--manual-run"])
    def test_database_error(
        self, mock_load_config, mock_configure_logging, mock_init_db, app_config, env_config, capsys
    ):
        mock_load_config.return_value = (app_config, env_config)
        mock_init_db.side_effect = DatabaseConnectionError("disk full")

        assert main() == 1
        assert "Database Error" in capsys.readouterr().err

    @patch("scheme_engine.main.load_runtime_config")
    @patch("sys.argv", ["scheme-engine"])
    def test_keyboard_interrupt(self, mock_load_config):
        mock_load_config.side_effect = KeyboardInterrupt()

        assert main() == 0

    @patch("scheme_engine.main.load_runtime_config")
    @patch("sys.argv", ["scheme-engine", "--log-level", "DEBUG"])
    def test_log_level_override_passed_through(self, mock_load_config):
        mock_load_config.side_effect = ConfigurationError("stop here")

        main()

        mock_load_config.assert_called_once_with(None, "DEBUG")


class TestCheckConfig:
    """Test suite for --check-config."""

    def test_valid_file(self, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("authority:\n  base_url: https://schemes.example.gov\n")

        with patch("sys.argv", ["scheme-engine", "--check-config", "--config", str(config_file)]):
            assert main() == 0

        assert "is valid" in capsys.readouterr().out

    def test_invalid_file(self, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("sync:\n  interval: 5s\n")

        with patch("sys.argv", ["scheme-engine", "--check-config", "--config", str(config_file)]):
            assert main() == 1

        output = capsys.readouterr().out
        assert "Configuration validation failed" in output
        assert "Missing required field: authority" in output

    def test_missing_file(self, tmp_path):
        missing = tmp_path / "absent.yaml"

        with patch("sys.argv", ["scheme-engine", "--check-config", "--config", str(missing)]):
            assert main() == 1
