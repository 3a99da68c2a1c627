from __future__ import annotations
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, FrozenSet, List, Optional

from dotenv import find_dotenv, load_dotenv

from service_io.connectors.mail_servers import detect_imap_server, detect_smtp_server
from service_io.errors import ConfigurationError
from service_io.message import Message

Transform = Callable[[Message], Optional[Message]]


class DuplicatePolicy(Enum):
    """What happens when a routing key is registered twice."""
    REJECT = "reject"      # ConfigurationError
    REPLACE = "replace"    # last registration wins, logged


class UnmatchedPolicy(Enum):
    """How messages for unknown keys are reported before being dropped."""
    IGNORE = "ignore"
    LOG = "log"
    WARN = "warn"


@dataclass
class ServiceConfig:
    key: str
    service: Any
    whitelist: Optional[FrozenSet[str]] = None
    timeout: Optional[float] = None


@dataclass
class EngineConfig:
    """Everything the engine needs, assembled before ``Engine.run()``."""

    inputs: List[Any] = field(default_factory=list)
    outputs: List[Any] = field(default_factory=list)
    services: List[ServiceConfig] = field(default_factory=list)
    transforms: List[Transform] = field(default_factory=list)
    service_timeout: Optional[float] = None
    output_timeout: Optional[float] = None
    drain_timeout: Optional[float] = None
    input_error_backoff: float = 1.0
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT
    unmatched_policy: UnmatchedPolicy = UnmatchedPolicy.LOG
    log_level: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides: Any) -> 'EngineConfig':
        """Build a config from environment variables (and ``.env`` if present)."""
        load_dotenv(find_dotenv(usecwd=True))
        cfg = cls(
            service_timeout=_env_float('SERVICE_TIMEOUT'),
            output_timeout=_env_float('OUTPUT_TIMEOUT'),
            drain_timeout=_env_float('DRAIN_TIMEOUT'),
            input_error_backoff=_env_float('INPUT_ERROR_BACKOFF', 1.0),
            duplicate_policy=_env_enum('DUPLICATE_POLICY', DuplicatePolicy, DuplicatePolicy.REJECT),
            unmatched_policy=_env_enum('UNMATCHED_POLICY', UnmatchedPolicy, UnmatchedPolicy.LOG),
            log_level=(os.getenv('LOG_LEVEL') or 'INFO').upper(),
        )
        for name, value in overrides.items():
            if not hasattr(cfg, name):
                raise ConfigurationError(f"Unknown engine option: {name}")
            setattr(cfg, name, value)
        return cfg


@dataclass
class MailSettings:
    email: str
    password: str = ''
    imap_server: Optional[str] = None
    smtp_server: Optional[str] = None
    smtp_port: int = 587
    polling_time: float = 3.0
    sender_name: Optional[str] = None
    mailbox: str = 'INBOX'

    def __post_init__(self) -> None:
        if '@' not in (self.email or ''):
            raise ConfigurationError(f"Not an email address: {self.email!r}")
        if not self.imap_server:
            self.imap_server = detect_imap_server(self.email)
        if not self.smtp_server:
            self.smtp_server = detect_smtp_server(self.email)

    @classmethod
    def from_env(cls) -> 'MailSettings':
        load_dotenv(find_dotenv(usecwd=True))
        email = os.getenv('EMAIL_ADDRESS')
        if not email:
            raise ConfigurationError("EMAIL_ADDRESS is not set (environment or .env)")
        return cls(
            email=email,
            password=os.getenv('EMAIL_PASSWORD', ''),
            imap_server=os.getenv('IMAP_SERVER'),
            smtp_server=os.getenv('SMTP_SERVER'),
            smtp_port=int(os.getenv('SMTP_PORT', '587')),
            polling_time=_env_float('POLLING_TIME', 3.0),
            sender_name=os.getenv('SENDER_NAME'),
            mailbox=os.getenv('MAILBOX', 'INBOX'),
        )


def _env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name}={value!r} is not a number")


def _env_enum(name: str, enum_cls, default):
    value = (os.getenv(name) or '').strip().lower()
    if not value:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        choices = ', '.join(m.value for m in enum_cls)
        raise ConfigurationError(f"{name}={value!r} is not one of: {choices}")
