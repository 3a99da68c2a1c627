"""service-io: connect inputs, outputs and services through one Message type."""

from service_io.config import DuplicatePolicy, EngineConfig, MailSettings, ServiceConfig, UnmatchedPolicy
from service_io.core import Engine, EngineStats, Route, Router, routing_key
from service_io.errors import (
    ConfigurationError,
    DeliveryError,
    InputExhausted,
    ParseError,
    ProcessingError,
    ServiceIOError,
)
from service_io.interface import Input, Output, Service, as_service
from service_io.logging_utils import setup_logging
from service_io.message import Message, lowercase_first_char
from service_io.secret_manager import AccessTokenManager, PasswordManager, SecretManager, SecretType

__version__ = '0.1.0'

__all__ = [
    'AccessTokenManager',
    'ConfigurationError',
    'DeliveryError',
    'DuplicatePolicy',
    'Engine',
    'EngineConfig',
    'EngineStats',
    'Input',
    'InputExhausted',
    'MailSettings',
    'Message',
    'Output',
    'ParseError',
    'PasswordManager',
    'ProcessingError',
    'Route',
    'Router',
    'SecretManager',
    'SecretType',
    'Service',
    'ServiceConfig',
    'ServiceIOError',
    'UnmatchedPolicy',
    'as_service',
    'lowercase_first_char',
    'routing_key',
    'setup_logging',
]
