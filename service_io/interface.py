from __future__ import annotations
import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from service_io.errors import ProcessingError
from service_io.message import Message

Deliver = Callable[[Message], Awaitable[None]]


@runtime_checkable
class Input(Protocol):
    async def next(self) -> Message:
        """Wait for the next message. Raise InputExhausted when there are no more."""
        ...


@runtime_checkable
class Output(Protocol):
    async def send(self, message: Message) -> None:
        """Deliver a message. Raise DeliveryError on failure."""
        ...


@runtime_checkable
class Service(Protocol):
    async def handle(self, message: Message) -> Optional[Message]:
        """Process a request and return the response, or None for no reply."""
        ...


class FunctionService:
    """Adapts a plain or ``async def`` function into a Service.

    Plain functions run in a worker thread so a blocking handler does not
    stall the other inputs.
    """

    def __init__(self, fn: Callable[[Message], Any]):
        self.fn = fn
        self.name = getattr(fn, '__name__', type(fn).__name__)
        self._is_async = inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
            getattr(fn, '__call__', None)
        )

    async def handle(self, message: Message) -> Optional[Message]:
        if self._is_async:
            result = await self.fn(message)
        else:
            result = await asyncio.to_thread(self.fn, message)
        if result is not None and not isinstance(result, Message):
            raise ProcessingError(
                f"Service '{self.name}' returned {type(result).__name__}, expected Message or None"
            )
        return result

    def __repr__(self) -> str:
        return f"FunctionService({self.name})"


def as_service(obj: Any) -> Service:
    if hasattr(obj, 'handle'):
        return obj
    if callable(obj):
        return FunctionService(obj)
    raise TypeError(f"{obj!r} is neither a Service nor a callable")


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
