"""Unit tests for the SMTP email transport.

Covers:
- STARTTLS, implicit TLS (port 465) and plain connections
- Authentication with and without credentials
- Message construction (headers, multipart bodies, Message-ID)
- Mapping SMTP failures to retryable and non-retryable results
- Address normalization and sender formatting
"""

import smtplib
import socket
from unittest.mock import MagicMock, Mock

import pytest

from notifier.config.environment import EnvironmentConfig
from notifier.notifications.models import (
    PermanentDeliveryError,
    RecipientRejectedError,
    SMTPDeliveryError,
)
from notifier.notifications.smtp_client import SMTPClient, build_sender_address, normalize_address


@pytest.fixture
def env_config_with_auth():
    return EnvironmentConfig(
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="bot@example.com",
        smtp_pass="secret123",
        smtp_sender_name="Referral Network",
        sender_address="notifications@example.com",
    )


@pytest.fixture
def env_config_without_auth():
    return EnvironmentConfig(smtp_host="smtp.example.com", smtp_port=25)


@pytest.fixture
def env_config_implicit_tls():
    return EnvironmentConfig(
        smtp_host="smtp.example.com",
        smtp_port=465,
        smtp_user="bot@example.com",
        smtp_pass="secret123",
    )


def _client(env_config, **kwargs):
    smtp = MagicMock()
    factory = Mock(return_value=smtp)
    ssl_factory = Mock(return_value=smtp)
    client = SMTPClient(env_config, smtp_factory=factory, smtp_ssl_factory=ssl_factory, **kwargs)
    return client, smtp, factory, ssl_factory


def test_send_with_starttls_and_login(env_config_with_auth):
    client, smtp, factory, ssl_factory = _client(env_config_with_auth, timeout_seconds=12)

    result = client.send("user@example.com", "Subject", "<p>Hi</p>", "Hi")

    factory.assert_called_once_with("smtp.example.com", 587, timeout=12)
    ssl_factory.assert_not_called()
    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("bot@example.com", "secret123")
    smtp.send_message.assert_called_once()
    smtp.quit.assert_called_once()

    assert result.success
    assert result.provider_message_id.startswith("<")
    assert result.provider_message_id.endswith("@example.com>")


def test_send_without_tls_or_auth(env_config_without_auth):
    client, smtp, _, _ = _client(env_config_without_auth, use_tls=False)

    assert client.send("user@example.com", "Subject", "<p>Hi</p>").success

    smtp.starttls.assert_not_called()
    smtp.login.assert_not_called()


def test_implicit_tls_on_port_465(env_config_implicit_tls):
    client, smtp, factory, ssl_factory = _client(env_config_implicit_tls)

    client.send("user@example.com", "Subject", "<p>Hi</p>")

    factory.assert_not_called()
    assert ssl_factory.call_args.args == ("smtp.example.com", 465)
    assert ssl_factory.call_args.kwargs["timeout"] == 30
    assert "context" in ssl_factory.call_args.kwargs
    smtp.starttls.assert_not_called()
    smtp.login.assert_called_once()


def test_message_headers_and_parts(env_config_with_auth):
    client, smtp, _, _ = _client(env_config_with_auth)

    client.send("user@example.com", "Your referral was claimed", "<p>Hi</p>", "Hi")

    message = smtp.send_message.call_args.args[0]
    assert message["To"] == "user@example.com"
    assert message["Subject"] == "Your referral was claimed"
    assert message["From"] == "Referral Network <notifications@example.com>"
    assert message["Date"]
    assert message.is_multipart()
    assert [part.get_content_type() for part in message.iter_parts()] == ["text/plain", "text/html"]


def test_html_only_message(env_config_with_auth):
    message = SMTPClient(env_config_with_auth).build_message("user@example.com", "S", "<p>Hi</p>")
    assert message.get_content_type() == "text/html"


def test_smtp_error_is_retryable(env_config_with_auth):
    client, smtp, _, _ = _client(env_config_with_auth)
    smtp.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")

    result = client.send("user@example.com", "Subject", "<p>Hi</p>")

    assert not result.success
    assert result.retryable
    assert "gone" in result.error
    smtp.quit.assert_called_once()


def test_timeout_is_retryable(env_config_with_auth):
    client, _, factory, _ = _client(env_config_with_auth)
    factory.side_effect = socket.timeout("timed out")

    result = client.send("user@example.com", "Subject", "<p>Hi</p>")

    assert not result.success
    assert result.retryable
    assert "Network error" in result.error


def test_refused_recipient_is_not_retryable(env_config_with_auth):
    client, smtp, _, _ = _client(env_config_with_auth)
    smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused(
        {"user@example.com": (550, b"No such user")}
    )

    result = client.send("user@example.com", "Subject", "<p>Hi</p>")

    assert not result.success
    assert result.retryable is False
    assert "user@example.com" in result.error


def test_send_message_raises_typed_errors(env_config_with_auth):
    client, smtp, _, _ = _client(env_config_with_auth)
    message = client.build_message("user@example.com", "S", "<p>Hi</p>")

    smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
    with pytest.raises(SMTPDeliveryError):
        client.send_message(message)

    smtp.login.side_effect = None
    smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused({"user@example.com": (550, b"")})
    with pytest.raises(RecipientRejectedError):
        client.send_message(message)


def test_quit_failure_is_ignored(env_config_with_auth):
    client, smtp, _, _ = _client(env_config_with_auth)
    smtp.quit.side_effect = smtplib.SMTPServerDisconnected("already closed")

    assert client.send("user@example.com", "Subject", "<p>Hi</p>").success


class TestNormalizeAddress:
    def test_valid_address_normalized(self):
        assert normalize_address("  User@Example.COM ") == "User@example.com"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing_address(self, value):
        with pytest.raises(PermanentDeliveryError, match="No email address"):
            normalize_address(value)

    def test_malformed_address(self):
        with pytest.raises(PermanentDeliveryError, match="Invalid email address"):
            normalize_address("not-an-email")


def test_build_sender_address(env_config_with_auth):
    assert build_sender_address(env_config_with_auth) == "Referral Network <notifications@example.com>"
