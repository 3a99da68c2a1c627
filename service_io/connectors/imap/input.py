from __future__ import annotations
import asyncio
import imaplib
import logging
from typing import Optional

from service_io.errors import ParseError
from service_io.message import Message
from service_io.retry import RetryPolicy
from service_io.secret_manager import SecretManager, SecretType

from ..mail import email_to_message
from .client import ImapClient, ImapProtocolError
from .session import ImapSession

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (imaplib.IMAP4.error, ImapProtocolError, OSError, EOFError)


class ImapInput:
    """Polls a mailbox and yields each mail as a Message.

    Every mail is removed from the server once fetched. Connection problems
    drop the session; it is reopened on the next poll, so the engine never
    sees them.
    """

    name = 'imap'

    def __init__(
        self,
        server: str,
        email: str,
        secret_manager: SecretManager,
        polling_time: float = 3.0,
        mailbox: str = 'INBOX',
        retry: Optional[RetryPolicy] = None,
        ssl: bool = True,
        port: Optional[int] = None,
        client: Optional[ImapClient] = None,
    ):
        self.email = email
        self.secret_manager = secret_manager
        self.polling_time = polling_time
        self.mailbox = mailbox
        self.client = client or ImapClient(ImapSession(server, ssl=ssl, port=port), retry=retry)
        self._opened = False

    @classmethod
    def from_settings(cls, settings, secret_manager: SecretManager, **kwargs) -> 'ImapInput':
        return cls(
            settings.imap_server,
            settings.email,
            secret_manager,
            polling_time=settings.polling_time,
            mailbox=settings.mailbox,
            **kwargs,
        )

    async def next(self) -> Message:
        while True:
            raw = await asyncio.to_thread(self._poll)
            if raw is None:
                await asyncio.sleep(self.polling_time)
                continue
            try:
                message = email_to_message(raw)
            except ParseError as e:
                logger.warning(f"Dropping unparseable mail: {e.detail}")
                continue
            logger.info(f"Mail from '{message.origin}': {message.subject}")
            return message

    def _poll(self) -> Optional[bytes]:
        try:
            if not self._opened:
                self._open()
            return self.client.pop_oldest(self.mailbox)
        except CONNECTION_ERRORS as e:
            logger.warning(f"IMAP error on {self.client.session.server}, reconnecting on next poll: {e}")
            self._reset()
            return None

    def _open(self) -> None:
        try:
            self.client.open(self.email, self.secret_manager)
        except imaplib.IMAP4.error:
            if self.secret_manager.secret_type() is not SecretType.ACCESS_TOKEN:
                raise
            logger.info("IMAP authentication rejected, refreshing access token")
            self.client.session.drop()
            self.secret_manager.refresh()
            self.client.open(self.email, self.secret_manager)
        self._opened = True

    def _reset(self) -> None:
        self._opened = False
        self.client.session.drop()

    def close(self) -> None:
        if self._opened:
            self.client.close()
            self._opened = False
