from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from service_io.config import DuplicatePolicy, Transform, UnmatchedPolicy
from service_io.errors import ConfigurationError
from service_io.interface import Service, as_service
from service_io.logging_utils import short
from service_io.message import Message

logger = logging.getLogger(__name__)


def routing_key(message: Message) -> str:
    """First whitespace-separated token of ``message.key`` ('' if none)."""
    words = message.key.split()
    return words[0] if words else ''


def as_whitelist(whitelist: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    """Normalise a whitelist; a single string is one origin, not a set of characters."""
    if whitelist is None:
        return None
    if isinstance(whitelist, str):
        return frozenset([whitelist])
    return frozenset(whitelist)


@dataclass(frozen=True)
class Route:
    key: str
    service: Service
    whitelist: Optional[FrozenSet[str]] = None
    timeout: Optional[float] = None

    def allows(self, origin: str) -> bool:
        return self.whitelist is None or origin in self.whitelist


class Router:
    """Maps routing keys to services, after a chain of input transforms.

    Transforms run in registration order; a transform returning None drops
    the message. The routing table is not modified once the engine runs.
    """

    def __init__(
        self,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT,
        unmatched_policy: UnmatchedPolicy = UnmatchedPolicy.LOG,
    ):
        self.duplicate_policy = duplicate_policy
        self.unmatched_policy = unmatched_policy
        self._routes: Dict[str, Route] = {}
        self._transforms: List[Transform] = []

    def register(
        self,
        key: str,
        service: Any,
        whitelist: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> Route:
        if not isinstance(key, str) or not key.strip():
            raise ConfigurationError("Service key must be a non-empty string", key=key)
        if len(key.split()) != 1 or key != key.strip():
            raise ConfigurationError(f"Service key '{key}' must not contain whitespace", key=key)
        if timeout is not None and timeout <= 0:
            raise ConfigurationError(f"Timeout for '{key}' must be positive", key=key, timeout=timeout)

        route = Route(
            key=key,
            service=as_service(service),
            whitelist=as_whitelist(whitelist),
            timeout=timeout,
        )
        if key in self._routes:
            if self.duplicate_policy is DuplicatePolicy.REJECT:
                raise ConfigurationError(f"Service '{key}' is already registered", key=key)
            logger.warning(f"Service '{key}' registered again, replacing previous one")
        self._routes[key] = route
        return route

    def add_transform(self, fn: Transform) -> None:
        self._transforms.append(fn)

    def map(self, fn: Callable[[Message], Message]) -> None:
        self.add_transform(fn)

    def filter(self, predicate: Callable[[Message], bool]) -> None:
        def _filter(message: Message) -> Optional[Message]:
            return message if predicate(message) else None

        _filter.__name__ = getattr(predicate, '__name__', 'filter')
        self.add_transform(_filter)

    def endpoint(self, key: str) -> Optional[Route]:
        return self._routes.get(key)

    @property
    def routes(self) -> Dict[str, Route]:
        return dict(self._routes)

    @property
    def transforms(self) -> Tuple[Transform, ...]:
        return tuple(self._transforms)

    def transform(self, message: Message) -> Optional[Message]:
        for fn in self._transforms:
            try:
                message = fn(message)
            except Exception as e:
                logger.warning(f"Transform {getattr(fn, '__name__', fn)!s} failed, dropping message "
                               f"from '{message.origin}': {e}")
                return None
            if message is None:
                return None
            if not isinstance(message, Message):
                logger.warning(f"Transform {getattr(fn, '__name__', fn)!s} returned "
                               f"{type(message).__name__}, expected Message or None; dropping message")
                return None
        return message

    def resolve(self, message: Message) -> Tuple[Optional[Route], Optional[Message]]:
        """Run the transform chain and look up the route.

        Returns ``(route, message)``. ``route`` is None when the message was
        filtered, the key is unknown, or the origin is not whitelisted; the
        message is None when the transform chain dropped it.
        """
        transformed = self.transform(message)
        if transformed is None:
            logger.debug(f"Message from '{message.origin}' dropped by transforms")
            return None, None

        key = routing_key(transformed)
        route = self._routes.get(key)
        if route is None:
            self._report_unmatched(key, transformed)
            return None, transformed
        if not route.allows(transformed.origin):
            logger.warning(f"Drop message for service '{key}' not allowed for user '{transformed.origin}'")
            return None, transformed
        return route, transformed

    def route(self, message: Message) -> Optional[Tuple[Service, Message]]:
        route, transformed = self.resolve(message)
        if route is None:
            return None
        return route.service, transformed

    def _report_unmatched(self, key: str, message: Message) -> None:
        if self.unmatched_policy is UnmatchedPolicy.IGNORE:
            return
        text = f"Drop message for unknown service '{short(key)}' from '{message.origin}'"
        if self.unmatched_policy is UnmatchedPolicy.WARN:
            logger.warning(text)
        else:
            logger.info(text)

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, key: str) -> bool:
        return key in self._routes
