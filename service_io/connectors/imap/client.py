from __future__ import annotations
import logging
from typing import Optional

from service_io.retry import RetryPolicy
from service_io.secret_manager import SecretManager

from .session import ImapSession

logger = logging.getLogger(__name__)


class ImapProtocolError(Exception):
    """The server answered a command with something other than OK."""


class ImapClient:
    """IMAP operations the mail input needs, on top of ImapSession, with retries."""

    def __init__(self, session: ImapSession, retry: Optional[RetryPolicy] = None) -> None:
        self.session = session
        self.retry = retry or RetryPolicy()

    def open(self, username: str, secrets: SecretManager) -> None:
        self.session.connect()
        typ, data = self.session.authenticate(username, secrets)
        _check(typ, data, 'authenticate')
        logger.debug(f"IMAP connected to {self.session.server} as {username}")

    def close(self) -> None:
        if self.session.connected:
            try:
                self.session.logout()
            except Exception as e:
                logger.debug(f"IMAP logout failed: {e}")
                self.session.drop()

    def safe_select(self, mailbox: str = 'INBOX') -> int:
        """Select ``mailbox`` and return how many messages it holds."""
        typ, data = self.retry.call(self.session.select, mailbox)
        _check(typ, data, 'select')
        try:
            return int(data[0])
        except (TypeError, ValueError, IndexError):
            return 0

    def safe_fetch(self, message_set: str, message_parts: str = '(RFC822)') -> Optional[bytes]:
        typ, data = self.retry.call(self.session.fetch, message_set, message_parts)
        _check(typ, data, 'fetch')
        for item in data or []:
            if isinstance(item, tuple) and len(item) > 1:
                return item[1]
        return None

    def safe_store(self, message_set: str, command: str, flags: str) -> None:
        typ, data = self.retry.call(self.session.store, message_set, command, flags)
        _check(typ, data, 'store')

    def safe_expunge(self) -> None:
        typ, data = self.retry.call(self.session.expunge)
        _check(typ, data, 'expunge')

    def pop_oldest(self, mailbox: str = 'INBOX') -> Optional[bytes]:
        """Fetch the first message of ``mailbox`` and delete it from the server.

        Returns the raw RFC822 bytes, or None when the mailbox is empty.
        """
        if self.safe_select(mailbox) == 0:
            return None
        raw = self.safe_fetch('1', '(RFC822)')
        self.safe_store('1', '+FLAGS', '\\Deleted')
        self.safe_expunge()
        return raw


def _check(typ, data, command: str) -> None:
    if typ != 'OK':
        raise ImapProtocolError(f"IMAP {command} failed: {typ} {data!r}")
