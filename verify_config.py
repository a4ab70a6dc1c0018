#!/usr/bin/env python3
"""Check config.example.yaml against the configuration schema."""

import sys
from pathlib import Path

import yaml

from notifier.config.exceptions import ConfigurationError
from notifier.config.loader import parse_config
from notifier.config.validators import check_for_warnings

KNOWN_SECTIONS = ["queue", "retention", "email", "preferences", "app", "logging"]


def verify_config_structure(config_file: Path = Path("config.example.yaml")) -> bool:
    """Parse the example config and print a summary of the effective settings."""
    if not config_file.exists():
        print(f"✗ {config_file} not found")
        return False

    try:
        with open(config_file, "r") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        print(f"✗ Failed to parse {config_file}: {e}")
        return False

    unknown = sorted(set(raw or {}) - set(KNOWN_SECTIONS))
    if unknown:
        print(f"✗ Unknown top-level sections: {', '.join(unknown)}")
        return False

    try:
        config = parse_config(raw)
    except ConfigurationError as e:
        print(f"✗ {config_file} validation failed:")
        print(e.render())
        return False

    print(f"✓ {config_file} structure is valid")
    print(f"  - Poll interval: {config.queue.poll_interval} ({config.queue.poll_interval_seconds}s)")
    print(f"  - Batch size: {config.queue.batch_size}, workers: {config.queue.max_concurrency}")
    print(f"  - Retries: {config.queue.max_retries}, backoff base: {config.queue.backoff_base_seconds}s")
    print(f"  - Retention: {config.retention.days_to_keep} days, cleanup every {config.retention.cleanup_interval}")
    print(f"  - App URL: {config.app.app_url}")

    for message in check_for_warnings(config):
        print(f"  ! {message}")
    return True


if __name__ == "__main__":
    sys.exit(0 if verify_config_structure() else 1)
