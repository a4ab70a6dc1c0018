"""Shared fixtures."""

import pytest

from notifier.logging.context import clear_log_context
from notifier.persistence import close_database, init_database


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite database; worker threads need a shared file, not :memory:."""
    init_database(f"sqlite:///{tmp_path / 'notifications.db'}")
    yield
    close_database()


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Minimal valid environment for load_config."""
    for name in (
        "SMTP_USER",
        "SMTP_PASS",
        "SMTP_SENDER_NAME",
        "EMAIL_SENDER_ADDRESS",
        "LOG_LEVEL",
        "DATABASE_URL",
        "APP_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SMTP_HOST", "smtp.test.com")
    monkeypatch.setenv("SMTP_PORT", "587")


@pytest.fixture(autouse=True)
def clean_log_context():
    clear_log_context()
    yield
    clear_log_context()
