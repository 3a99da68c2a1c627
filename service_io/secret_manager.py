"""Credentials for connectors.

A secret manager is handed to each connector at construction time; several
connectors (an IMAP input and an SMTP output for the same account) may share
one. Obtaining or refreshing tokens is delegated to an injected callable.
"""

from __future__ import annotations
import threading
from enum import Enum
from typing import Callable, Optional, Protocol


class SecretType(Enum):
    PASSWORD = "password"
    ACCESS_TOKEN = "access_token"


class SecretManager(Protocol):
    def secret_type(self) -> SecretType:
        ...

    def secret(self) -> str:
        ...

    def refresh(self) -> None:
        ...


class PasswordManager:
    def __init__(self, password: str):
        self.password = password

    def secret_type(self) -> SecretType:
        return SecretType.PASSWORD

    def secret(self) -> str:
        return self.password

    def refresh(self) -> None:
        pass

    def __repr__(self) -> str:
        return 'PasswordManager(***)'


class AccessTokenManager:
    """Holds an OAuth2 access token; ``refresh()`` asks ``refresher`` for a new one."""

    def __init__(self, token: str, refresher: Optional[Callable[[], str]] = None):
        self._token = token
        self._refresher = refresher
        self._lock = threading.Lock()

    def secret_type(self) -> SecretType:
        return SecretType.ACCESS_TOKEN

    def secret(self) -> str:
        with self._lock:
            return self._token

    def refresh(self) -> None:
        if self._refresher is None:
            return
        token = self._refresher()
        with self._lock:
            self._token = token

    def __repr__(self) -> str:
        return 'AccessTokenManager(***)'


def xoauth2_string(user: str, token: str) -> str:
    return f"user={user}\x01auth=Bearer {token}\x01\x01"
