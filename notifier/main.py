"""Main entry point for the referral notification worker."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

from notifier.config.environment import EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.config.loader import load_config
from notifier.config.models import AppConfig
from notifier.logging import get_logger
from notifier.logging.config import configure_logging
from notifier.notifications import ChannelDispatcher, SMTPClient, TemplateRenderer
from notifier.persistence.database import close_database, init_database, redact_url
from notifier.processing import QueueProcessor
from notifier.scheduler import SchedulerService

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def build_processor(app_config: AppConfig, env_config: EnvironmentConfig) -> QueueProcessor:
    """
    Wire the processor and its collaborators.

    The SMTP client and template renderer are constructed once here and
    shared by every run.
    """
    email_transport = SMTPClient(
        env_config,
        use_tls=app_config.email.use_tls,
        timeout_seconds=app_config.email.timeout_seconds,
    )
    dispatcher = ChannelDispatcher(
        renderer=TemplateRenderer.from_settings(app_config.app),
        email_transport=email_transport,
        app_url=app_config.app.app_url,
        currency_symbol=app_config.app.currency_symbol,
    )
    return QueueProcessor(
        dispatcher,
        queue_config=app_config.queue,
        retention_config=app_config.retention,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Referral Notifier - durable notification queue worker"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single processor pass and exit (non-zero if any item failed)",
    )
    mode.add_argument(
        "--stats",
        action="store_true",
        help="Print queue counts by status for the configured stats window and exit",
    )
    mode.add_argument(
        "--purge",
        action="store_true",
        help="Run the retention cleanup once and exit",
    )
    return parser


def run_daemon(processor: QueueProcessor, app_config: AppConfig) -> int:
    """Run the processor on its schedule until SIGINT or SIGTERM."""
    shutdown_event = threading.Event()

    scheduler_service = SchedulerService(
        process_callable=processor.run_once,
        poll_interval_seconds=app_config.queue.poll_interval_seconds,
        cleanup_callable=processor.run_maintenance,
        cleanup_interval_seconds=app_config.retention.cleanup_interval_seconds,
        max_overlapping_runs=app_config.queue.max_overlapping_runs,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
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
        scheduler_service.shutdown(wait=False)

    return 0


def main(argv=None) -> int:
    """
    Main entry point for the notification worker.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        environment = os.environ.get("ENVIRONMENT", "local")
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=environment,
        )

        logger.info(
            "Referral Notifier starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "database_url": redact_url(env_config.database_url),
            },
        )

        init_database(env_config.database_url)
        processor = build_processor(app_config, env_config)

        try:
            if args.stats:
                stats = processor.get_stats()
                print(json.dumps(stats.to_dict(), indent=2))
                return 0

            if args.purge:
                deleted = processor.run_maintenance()
                print(json.dumps(deleted, indent=2))
                return 0

            if args.once:
                result = processor.run_once()
                logger.info(
                    f"Single run completed: {result.processed} processed, {result.sent} sent, "
                    f"{result.requeued} requeued, {result.failed} failed",
                    extra={"event": "service.single_run.completed", **result.to_dict()},
                )
                return 1 if result.had_failures else 0

            return run_daemon(processor, app_config)
        finally:
            close_database()
            logger.info(
                "Referral Notifier stopped",
                extra={
                    "event": "service.stopping",
                    "uptime_seconds": round(time.time() - start_time, 2),
                },
            )

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e.message}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={
                "event": "service.fatal",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
