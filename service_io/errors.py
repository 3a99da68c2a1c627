"""Exception taxonomy for service-io.

Only :class:`ConfigurationError` is fatal for the engine. The others are
reported by inputs, services and outputs, logged and counted by the engine,
and never stop the dispatch loop.
"""

from typing import Any, Dict


class ServiceIOError(Exception):
    """Base exception for all service-io errors."""

    error_code = 'SERVICE_IO_ERROR'

    def __init__(self, detail: str, **context: Any):
        self.detail = detail
        self.context = context
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.error_code, 'detail': self.detail, 'context': dict(self.context)}


class ConfigurationError(ServiceIOError):
    """The engine cannot start with the given configuration."""

    error_code = 'CONFIGURATION_ERROR'


class ParseError(ServiceIOError):
    """A raw external item could not be turned into a Message."""

    error_code = 'PARSE_ERROR'


class ProcessingError(ServiceIOError):
    """A service could not complete processing of a message."""

    error_code = 'PROCESSING_ERROR'


class DeliveryError(ServiceIOError):
    """An output could not deliver a message."""

    error_code = 'DELIVERY_ERROR'


class InputExhausted(ServiceIOError):
    """An input has no more messages and will never produce one again."""

    error_code = 'INPUT_EXHAUSTED'

    def __init__(self, detail: str = 'input exhausted', **context: Any):
        super().__init__(detail, **context)
