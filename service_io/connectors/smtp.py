from __future__ import annotations
import asyncio
import logging
import smtplib
import ssl
from typing import Optional

from service_io.errors import DeliveryError
from service_io.message import Message
from service_io.retry import RetryPolicy
from service_io.secret_manager import SecretManager, SecretType, xoauth2_string

from .mail import message_to_email

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, ConnectionError, TimeoutError)


class SmtpOutput:
    """Sends each message as a mail to its origin.

    Uses STARTTLS (or implicit TLS on port 465) and authenticates with LOGIN
    or XOAUTH2 depending on the secret manager. A rejected access token is
    refreshed once before giving up.
    """

    name = 'smtp'

    def __init__(
        self,
        server: str,
        email: str,
        secret_manager: SecretManager,
        sender_name: Optional[str] = None,
        port: int = 587,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
    ):
        self.server = server
        self.email = email
        self.secret_manager = secret_manager
        self.sender_name = sender_name
        self.port = port
        self.retry = retry or RetryPolicy(retry_on=TRANSIENT_ERRORS)
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings, secret_manager: SecretManager, **kwargs) -> 'SmtpOutput':
        return cls(
            settings.smtp_server,
            settings.email,
            secret_manager,
            sender_name=settings.sender_name,
            port=settings.smtp_port,
            **kwargs,
        )

    async def send(self, message: Message) -> None:
        mime = message_to_email(message, self.email, self.sender_name)
        await asyncio.to_thread(self._send_blocking, mime)
        logger.info(f"Mail sent to '{message.origin}': {message.subject}")

    def _send_blocking(self, mime) -> None:
        try:
            try:
                self.retry.call(self._send_once, mime)
            except smtplib.SMTPAuthenticationError:
                if self.secret_manager.secret_type() is not SecretType.ACCESS_TOKEN:
                    raise
                logger.info("SMTP authentication rejected, refreshing access token")
                self.secret_manager.refresh()
                self.retry.call(self._send_once, mime)
        except smtplib.SMTPRecipientsRefused as e:
            raise DeliveryError(f"Recipient refused: {mime['To']}", recipients=list(e.recipients)) from e
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery to {mime['To']} failed: {e}") from e

    def _connect(self) -> smtplib.SMTP:
        if self.port == 465:
            return smtplib.SMTP_SSL(self.server, self.port, timeout=self.timeout,
                                    context=ssl.create_default_context())
        server = smtplib.SMTP(self.server, self.port, timeout=self.timeout)
        server.starttls(context=ssl.create_default_context())
        return server

    def _send_once(self, mime) -> None:
        with self._connect() as server:
            self._authenticate(server)
            server.send_message(mime)

    def _authenticate(self, server: smtplib.SMTP) -> None:
        if self.secret_manager.secret_type() is SecretType.ACCESS_TOKEN:
            token = self.secret_manager.secret()
            server.ehlo()
            server.auth('XOAUTH2', lambda challenge=None: xoauth2_string(self.email, token))
        else:
            server.login(self.email, self.secret_manager.secret())
