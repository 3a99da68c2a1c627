from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Retry with linear backoff (``backoff * attempt`` seconds between tries).

    Used by connectors to hide transient failures from the engine. After the
    last attempt the last error is raised to the caller.
    """

    retries: int = 2
    backoff: float = 0.5
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        last_err = None
        for attempt in range(self.retries + 1):
            try:
                return fn(*args, **kwargs)
            except self.retry_on as e:
                last_err = e
                if attempt == self.retries:
                    break
                logger.debug(f"Retry {attempt + 1}/{self.retries} for {_name(fn)}: {e}")
                time.sleep(self.backoff * (attempt + 1))
        raise last_err

    async def acall(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        last_err = None
        for attempt in range(self.retries + 1):
            try:
                return await fn(*args, **kwargs)
            except self.retry_on as e:
                last_err = e
                if attempt == self.retries:
                    break
                logger.debug(f"Retry {attempt + 1}/{self.retries} for {_name(fn)}: {e}")
                await asyncio.sleep(self.backoff * (attempt + 1))
        raise last_err


NO_RETRY = RetryPolicy(retries=0)


def _name(fn) -> str:
    return getattr(fn, '__qualname__', None) or getattr(fn, '__name__', repr(fn))
