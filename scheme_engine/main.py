"""Main entry point for the Scheme Eligibility Engine service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

from scheme_engine.config import ConfigurationError, load_config, validate_config_file
from scheme_engine.config.environment import EnvironmentConfig
from scheme_engine.config.models import AppConfig
from scheme_engine.corpus import SchemeCorpus, SqlCorpusStore
from scheme_engine.logging import get_logger
from scheme_engine.logging.config import configure_logging
from scheme_engine.matching import EligibilityCache, MatchingEngine
from scheme_engine.notifications import (
    LoggingNotificationSink,
    NotificationTrigger,
    ProfileSource,
    StaticProfileSource,
    YamlProfileSource,
)
from scheme_engine.persistence import PersistenceError, close_database, init_database
from scheme_engine.pipeline import SyncPipeline
from scheme_engine.scheduler import SchedulerService
from scheme_engine.sync import HttpSchemeAuthority, SqlCheckpointStore, SyncEngine

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_pipeline(app_config: AppConfig, env_config: EnvironmentConfig) -> SyncPipeline:
    """Wire corpus, sync engine and notification trigger over the initialized database."""
    corpus = SchemeCorpus(store=SqlCorpusStore())
    channel = corpus.subscribe()

    authority = HttpSchemeAuthority.from_config(app_config.authority, env_config.authority_api_token)
    sync_engine = SyncEngine(
        corpus,
        authority,
        settings=app_config.sync,
        checkpoints=SqlCheckpointStore(),
        persist_status=True,
    )

    matcher = MatchingEngine(app_config.scoring, EligibilityCache(app_config.matching.cache_size))

    profiles: ProfileSource
    if app_config.profiles_file:
        profiles = YamlProfileSource(app_config.profiles_file)
    else:
        profiles = StaticProfileSource([])

    trigger = NotificationTrigger(
        corpus,
        channel,
        matcher,
        profiles,
        LoggingNotificationSink(),
        settings=app_config.notifications,
    )
    trigger.replay_logged_events()
    return SyncPipeline(sync_engine, trigger)


def main() -> int:
    """
    Main entry point for the Scheme Eligibility Engine.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    parser = argparse.ArgumentParser(
        description="Scheme Eligibility Engine - corpus sync, eligibility matching and change notifications"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml)",
    )
    parser.add_argument(
        "--manual-run",
        action="store_true",
        help="Run one sync cycle and reminder scan, then exit",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the configuration file and exit",
    )

    args = parser.parse_args()

    if args.check_config:
        return 0 if validate_config_file(args.config) else 1

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Scheme Eligibility Engine starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "manual_run": args.manual_run,
            },
        )

        init_database(env_config.database_url)

        logger.info(
            "Configuration loaded",
            extra={
                "event": "config.loaded",
                "authority": app_config.authority.base_url,
                "sync_interval_seconds": app_config.sync.interval_seconds,
                "reminder_interval_seconds": app_config.notifications.reminder_interval_seconds,
                "profiles_file": str(app_config.profiles_file) if app_config.profiles_file else None,
            },
        )

        pipeline = build_pipeline(app_config, env_config)

        if args.manual_run:
            logger.info("Executing manual run", extra={"event": "service.manual_run.starting"})
            result = pipeline.run_once()
            reminders = pipeline.run_reminders()

            sync = result.sync_result
            logger.info(
                f"Manual run completed: outcome={sync.outcome.value if sync else 'skipped'}, "
                f"{len(sync.events) if sync else 0} changes, "
                f"{result.notifications_sent} notifications, "
                f"{reminders.sent_count} reminders",
                extra={
                    "event": "service.manual_run.completed",
                    "duration_seconds": result.total_duration_seconds,
                    "had_errors": result.had_errors or reminders.had_errors,
                },
            )

            close_database()
            logger.info(
                "Scheme Eligibility Engine stopped",
                extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
            )
            return 1 if result.had_errors or reminders.had_errors else 0

        shutdown_event = threading.Event()
        scheduler_service = SchedulerService(
            sync_callable=pipeline.run_once,
            sync_interval_seconds=app_config.sync.interval_seconds,
            reminder_callable=pipeline.run_reminders,
            reminder_interval_seconds=app_config.notifications.reminder_interval_seconds,
            shutdown_event=shutdown_event,
        )

        def signal_handler(signum, frame):
            logger.info(
                f"Received signal {signum}, shutting down",
                extra={"event": "service.signal_received", "signal": signum},
            )
            pipeline.cancel_event.set()
            scheduler_service.shutdown(wait=False)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        scheduler_service.start()
        logger.info(
            "Scheduler started. Press Ctrl+C to stop",
            extra={"event": "service.daemon_mode.started"},
        )

        try:
            shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info(
                "Keyboard interrupt received, shutting down",
                extra={"event": "service.keyboard_interrupt"},
            )
            pipeline.cancel_event.set()
            scheduler_service.shutdown(wait=False)

        close_database()
        logger.info(
            "Scheme Eligibility Engine stopped",
            extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
        )
        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except PersistenceError as e:
        print(f"Database Error: {e}", file=sys.stderr)
        logger.critical(
            "Database unavailable",
            extra={"event": "service.startup.failed", "error_type": type(e).__name__},
            exc_info=True,
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0


if __name__ == "__main__":
    sys.exit(main())
