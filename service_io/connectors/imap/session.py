from __future__ import annotations
from typing import Any, Optional, Tuple
import imaplib

from service_io.secret_manager import SecretManager, SecretType, xoauth2_string


class ImapSession:
    """Thin wrapper over imaplib.

    Mirrors the imaplib calls the IMAP input needs, so the client above it can
    add retries and the tests can swap the connection for a fake.
    """

    def __init__(self, server: str, ssl: bool = True, port: Optional[int] = None) -> None:
        self.server = server
        self.ssl = ssl
        self.port = port
        self.conn: Optional[imaplib.IMAP4] = None

    @property
    def connected(self) -> bool:
        return self.conn is not None

    def connect(self) -> None:
        if self.ssl:
            self.conn = imaplib.IMAP4_SSL(self.server, self.port or imaplib.IMAP4_SSL_PORT)
        else:
            self.conn = imaplib.IMAP4(self.server, self.port or imaplib.IMAP4_PORT)

    def login(self, username: str, password: str) -> Tuple[str, Any]:
        assert self.conn is not None, "IMAP connection not initialized. Call connect() first."
        return self.conn.login(username, password)

    def authenticate(self, username: str, secrets: SecretManager) -> Tuple[str, Any]:
        """LOGIN with a password, XOAUTH2 with an access token."""
        if secrets.secret_type() is SecretType.ACCESS_TOKEN:
            assert self.conn is not None, "IMAP connection not initialized. Call connect() first."
            auth = xoauth2_string(username, secrets.secret()).encode()
            return self.conn.authenticate('XOAUTH2', lambda _: auth)
        return self.login(username, secrets.secret())

    def logout(self) -> Tuple[str, Any]:
        assert self.conn is not None
        try:
            return self.conn.logout()
        finally:
            self.conn = None

    def drop(self) -> None:
        """Forget a connection that is probably broken, without talking to it."""
        conn, self.conn = self.conn, None
        if conn is not None:
            try:
                conn.shutdown()
            except OSError:
                pass

    def select(self, mailbox: str = 'INBOX', readonly: bool = False):
        assert self.conn is not None
        return self.conn.select(mailbox, readonly=readonly)

    def fetch(self, message_set: str, message_parts: str):
        assert self.conn is not None
        return self.conn.fetch(message_set, message_parts)

    def store(self, message_set: str, command: str, flags: str):
        assert self.conn is not None
        return self.conn.store(message_set, command, flags)

    def expunge(self):
        assert self.conn is not None
        return self.conn.expunge()
