from __future__ import annotations
import asyncio
from typing import Optional

from service_io.errors import InputExhausted
from service_io.message import Message


class QueueInput:
    """Reads messages another coroutine puts on an ``asyncio.Queue``.

    Putting ``None`` on the queue ends the input.
    """

    name = 'queue'

    def __init__(self, queue: Optional[asyncio.Queue] = None):
        self.queue = queue if queue is not None else asyncio.Queue()
        self._closed = False

    async def next(self) -> Message:
        if self._closed:
            raise InputExhausted()
        item = await self.queue.get()
        if item is None:
            self._closed = True
            raise InputExhausted()
        return item

    async def put(self, message: Optional[Message]) -> None:
        await self.queue.put(message)

    def put_nowait(self, message: Optional[Message]) -> None:
        self.queue.put_nowait(message)


class QueueOutput:
    name = 'queue'

    def __init__(self, queue: Optional[asyncio.Queue] = None):
        self.queue = queue if queue is not None else asyncio.Queue()

    async def send(self, message: Message) -> None:
        await self.queue.put(message)
