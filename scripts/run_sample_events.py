#!/usr/bin/env python3
"""Sample event harness for end-to-end validation.

Fans a set of sample business events out into a scratch SQLite queue, then
runs the processor until the queue is drained, without sending real email:
the SMTP transport is patched to accept every message.

Usage:
    # Run against a scratch database (no SMTP server required)
    python scripts/run_sample_events.py

    # Custom database path and more processor runs
    python scripts/run_sample_events.py --database /tmp/sample.db --runs 5

    # Deliver through the SMTP server configured in .env
    SAMPLE_REAL_SMTP=1 python scripts/run_sample_events.py --config config.yaml
"""

import argparse
import os
import sys
from pathlib import Path
from unittest.mock import patch

from dotenv import load_dotenv

from notifier.config.loader import load_config
from notifier.domain import Recipient
from notifier.fanout import FanoutService, StaticRecipientDirectory, build_defaults
from notifier.logging.config import configure_logging
from notifier.main import build_processor
from notifier.notifications import DeliveryResult
from notifier.persistence.database import close_database, init_database

SAMPLE_ORGANIZATION = 42

SAMPLE_MEMBERS = [
    Recipient(user_id="seeker-1", email="priya@example.com", name="Priya"),
    Recipient(user_id="referrer-1", email="arjun@example.com", name="Arjun"),
    Recipient(user_id="referrer-2", email="kavya@example.com", name="Kavya"),
]

SAMPLE_EVENTS = [
    (
        "new_referral_request",
        {
            "request_id": "req-1",
            "organization_id": SAMPLE_ORGANIZATION,
            "job_title": "Backend Engineer",
            "company_name": "Acme",
            "seeker_id": "seeker-1",
            "seeker_name": "Priya",
        },
    ),
    (
        "referral_claimed",
        {
            "request_id": "req-1",
            "referrer_name": "Arjun",
            "job_title": "Backend Engineer",
            "company_name": "Acme",
            "recipient_user_id": "seeker-1",
            "recipient_email": "priya@example.com",
            "recipient_name": "Priya",
        },
    ),
    (
        "referral_verified",
        {
            "request_id": "req-1",
            "seeker_name": "Priya",
            "job_title": "Backend Engineer",
            "company_name": "Acme",
            "amount": 500,
            "new_balance": 1500,
            "recipient_user_id": "referrer-1",
            "recipient_email": "arjun@example.com",
            "recipient_name": "Arjun",
        },
    ),
    (
        "support_reply",
        {
            "ticket_id": "T-100",
            "subject": "Wallet withdrawal",
            "reply_preview": "We have processed your withdrawal.",
            "recipient_user_id": "referrer-2",
            "recipient_email": "kavya@example.com",
            "recipient_name": "Kavya",
        },
    ),
]


def print_header(title: str):
    """Print a formatted section header."""
    width = 80
    print("\n" + "=" * width)
    print(f" {title}")
    print("=" * width + "\n")


def print_summary_table(rows):
    """Print (label, value) rows as a two-column table."""
    label_width = max(len(label) for label, _ in rows)

    print("┌" + "─" * (label_width + 2) + "┬" + "─" * 22 + "┐")
    print(f"│ {'Metric':<{label_width}} │ {'Value':<20} │")
    print("├" + "─" * (label_width + 2) + "┼" + "─" * 22 + "┤")
    for label, value in rows:
        print(f"│ {label:<{label_width}} │ {str(value):<20} │")
    print("└" + "─" * (label_width + 2) + "┴" + "─" * 22 + "┘")


def main():
    """Main entry point for the sample event harness."""
    parser = argparse.ArgumentParser(
        description="Fan out sample events and drain the queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to configuration file")
    parser.add_argument(
        "--database",
        type=Path,
        default=Path("data/sample_events.db"),
        help="Path to SQLite database (default: data/sample_events.db)",
    )
    parser.add_argument("--runs", type=int, default=3, help="Maximum processor runs (default: 3)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: INFO)",
    )
    args = parser.parse_args()

    load_dotenv()
    use_real_smtp = os.environ.get("SAMPLE_REAL_SMTP", "0") == "1"

    print_header("Referral Notifier - Sample Event Harness")
    print(f"Database: {args.database}")
    print(f"SMTP: {'configured server' if use_real_smtp else 'patched (no mail leaves this machine)'}")

    try:
        app_config, env_config = load_config(args.config)
        configure_logging(level=args.log_level, format_type=app_config.logging.format, environment="sample")

        args.database.parent.mkdir(parents=True, exist_ok=True)
        database_url = f"sqlite:///{args.database.absolute()}"
        init_database(database_url)

        directory = StaticRecipientDirectory({SAMPLE_ORGANIZATION: SAMPLE_MEMBERS})
        fanout = FanoutService(
            directory=directory,
            preference_defaults=build_defaults(app_config.preferences),
            max_retries=app_config.queue.max_retries,
        )

        print_header("Fan-out")
        enqueued = 0
        for event_type, payload in SAMPLE_EVENTS:
            result = fanout.notify(event_type, payload)
            enqueued += result.enqueued
            print(f"{event_type:<22} recipients={result.recipient_count} rows={result.enqueued} "
                  f"skipped={len(result.skipped)}")

        processor = build_processor(app_config, env_config)
        runs = []

        print_header("Processing")
        if use_real_smtp:
            runs = _drain(processor, args.runs)
        else:
            with patch("notifier.notifications.smtp_client.SMTPClient.send") as mock_send:
                mock_send.return_value = DeliveryResult.ok(provider_message_id="<sample@localhost>")
                runs = _drain(processor, args.runs)

        stats = processor.get_stats()
        print_summary_table(
            [
                ("Rows Enqueued", enqueued),
                ("Processor Runs", len(runs)),
                ("Sent", sum(r.sent for r in runs)),
                ("Requeued", sum(r.requeued for r in runs)),
                ("Failed", sum(r.failed for r in runs)),
                ("Still Pending", stats.to_dict()["pending"]),
            ]
        )

        for run in runs:
            for error in run.errors:
                print(f"  ! {error}")

        print(f"\nInspect with: sqlite3 {args.database.absolute()} 'SELECT * FROM notification_queue;'")
        print(f"To clean up: rm {args.database.absolute()}\n")

        close_database()
        return 1 if any(r.had_failures for r in runs) else 0

    except Exception as e:
        print(f"\n❌ Fatal error: {e}")
        import traceback
        traceback.print_exc()
        return 1


def _drain(processor, max_runs):
    runs = []
    for number in range(1, max_runs + 1):
        result = processor.run_once()
        runs.append(result)
        print(f"Run {number}: processed={result.processed} sent={result.sent} "
              f"requeued={result.requeued} failed={result.failed}")
        if result.processed == 0:
            break
    return runs


if __name__ == "__main__":
    sys.exit(main())
