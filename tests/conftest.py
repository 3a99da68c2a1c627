import asyncio
import os
import sys
from typing import List, Optional

import pytest
from faker import Faker

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from service_io.errors import DeliveryError, InputExhausted, ProcessingError  # noqa: E402
from service_io.message import Message  # noqa: E402


class ListInput:
    """Yields the given messages in order, then reports exhaustion."""

    def __init__(self, messages):
        self.messages = list(messages)
        self.closed = False

    async def next(self) -> Message:
        await asyncio.sleep(0)
        if not self.messages:
            raise InputExhausted()
        return self.messages.pop(0)

    def close(self):
        self.closed = True


class BlockingInput:
    """Never produces anything; used to check shutdown."""

    def __init__(self):
        self.cancelled = False
        self.closed = False

    async def next(self) -> Message:
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    async def close(self):
        self.closed = True


class RecordingOutput:
    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.sent: List[Message] = []
        self.closed = False

    async def send(self, message: Message) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append(message)

    def close(self):
        self.closed = True


class FailingOutput:
    def __init__(self, exc: Optional[Exception] = None):
        self.exc = exc or DeliveryError("mailbox unavailable")
        self.attempts = 0

    async def send(self, message: Message) -> None:
        self.attempts += 1
        raise self.exc


class RecordingService:
    """Echoes requests back and remembers them in call order."""

    def __init__(self, reply: bool = True):
        self.reply = reply
        self.calls: List[Message] = []

    async def handle(self, message: Message) -> Optional[Message]:
        self.calls.append(message)
        return message if self.reply else None


class FailingService:
    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.calls = 0

    async def handle(self, message: Message) -> Optional[Message]:
        self.calls += 1
        if self.fail_on is None or self.fail_on in message.args:
            raise ProcessingError(f"cannot handle {message.args}")
        return message


@pytest.fixture
def fake():
    Faker.seed(1234)
    return Faker()


@pytest.fixture
def make_message(fake):
    def _make(key: str = 'echo', origin: Optional[str] = None, **fields) -> Message:
        fields.setdefault('body', fake.sentence())
        return Message(origin=origin or fake.email(), key=key, **fields)

    return _make


@pytest.fixture
def output():
    return RecordingOutput()
