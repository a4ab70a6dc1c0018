"""SMTP transport for the email channel.

``SMTPClient`` is built once at startup from the environment configuration and
injected into the dispatcher. It opens one connection per message, with a
bounded timeout on connect and on every command, and reports the outcome as a
``DeliveryResult`` carrying the generated Message-ID.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email

from notifier.config.environment import EnvironmentConfig

from .models import DeliveryResult, PermanentDeliveryError, RecipientRejectedError, SMTPDeliveryError

logger = logging.getLogger(__name__)


class SMTPClient:
    """Wrapper around smtplib for sending one message per call.

    Handles connection lifecycle, TLS/SSL negotiation and authentication.
    The smtplib factories can be replaced for testing.
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        use_tls: bool = True,
        timeout_seconds: float = 30,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        """Initialize SMTP client.

        Args:
            env_config: Environment configuration with SMTP settings
            use_tls: Whether to use TLS (STARTTLS or implicit SSL on port 465)
            timeout_seconds: Socket timeout for connect and each SMTP command
            smtp_factory: Factory for SMTP instances (for mocking)
            smtp_ssl_factory: Factory for SMTP_SSL instances (for mocking)
        """
        self.env_config = env_config
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL
        self.sender = build_sender_address(env_config)

    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> DeliveryResult:
        """Send one email.

        Args:
            to: Recipient address
            subject: Subject line
            html_body: HTML body
            text_body: Optional plain text alternative

        Returns:
            DeliveryResult; ``retryable`` is False when the server refused
            the recipient
        """
        message = self.build_message(to, subject, html_body, text_body)
        message_id = message["Message-ID"]

        try:
            self.send_message(message)
        except RecipientRejectedError as e:
            return DeliveryResult.failed(str(e), retryable=False)
        except SMTPDeliveryError as e:
            return DeliveryResult.failed(str(e), retryable=True)

        logger.debug(f"Message {message_id} accepted for {to}")
        return DeliveryResult.ok(provider_message_id=message_id)

    def build_message(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = to
        message["Date"] = formatdate(localtime=False)
        message["Message-ID"] = make_msgid(domain=_sender_domain(self.env_config))

        if text_body:
            message.set_content(text_body)
            message.add_alternative(html_body, subtype="html")
        else:
            message.set_content(html_body, subtype="html")

        return message

    def send_message(self, message: EmailMessage) -> None:
        """Send a fully built message via SMTP.

        Raises:
            RecipientRejectedError: If the server refused every recipient
            SMTPDeliveryError: On any other SMTP or network failure
        """
        env_config = self.env_config
        smtp = None
        try:
            if env_config.smtp_port == 465:
                logger.debug(
                    f"Connecting to {env_config.smtp_host}:{env_config.smtp_port} with implicit TLS"
                )
                smtp = self.smtp_ssl_factory(
                    env_config.smtp_host,
                    env_config.smtp_port,
                    timeout=self.timeout_seconds,
                    context=ssl.create_default_context(),
                )
            else:
                logger.debug(f"Connecting to {env_config.smtp_host}:{env_config.smtp_port}")
                smtp = self.smtp_factory(
                    env_config.smtp_host,
                    env_config.smtp_port,
                    timeout=self.timeout_seconds,
                )
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())

            if env_config.smtp_user and env_config.smtp_pass:
                smtp.login(env_config.smtp_user, env_config.smtp_pass)

            smtp.send_message(message)

        except smtplib.SMTPRecipientsRefused as e:
            raise RecipientRejectedError(f"Recipient refused: {', '.join(e.recipients)}") from e
        except smtplib.SMTPException as e:
            error_msg = f"SMTP error during message delivery: {e}"
            logger.warning(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        except OSError as e:
            # Includes socket timeouts
            error_msg = f"Network error during SMTP connection: {e}"
            logger.warning(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.debug(f"Error closing SMTP connection: {e}")


def normalize_address(address: Optional[str]) -> str:
    """Validate and normalize a recipient address.

    Raises:
        PermanentDeliveryError: If the address is empty or malformed
    """
    if not address or not address.strip():
        raise PermanentDeliveryError("No email address in payload")
    try:
        return validate_email(address.strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise PermanentDeliveryError(f"Invalid email address '{address}': {e}") from e


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the 'From' header, e.g. ``Referral Network <notify@example.com>``."""
    return formataddr((env_config.smtp_sender_name, env_config.sender_address))


def _sender_domain(env_config: EnvironmentConfig) -> str:
    _, _, domain = env_config.sender_address.rpartition("@")
    return domain or env_config.smtp_host
