from __future__ import annotations
import asyncio
import logging
import sys
import threading
from typing import Optional, TextIO

from service_io.errors import InputExhausted
from service_io.message import Message

logger = logging.getLogger(__name__)


class UserStdin:
    """Each non-blank line typed on stdin is a request from ``user``.

    The line is read like a mail subject: ``echo hello`` calls the ``echo``
    service with args ``['hello']``. Lines are read by a daemon thread, so a
    pending read never keeps the process alive after the engine stops.
    """

    name = 'stdin'

    def __init__(self, user: str = 'user', stream: Optional[TextIO] = None):
        self.user = user
        self.stream = stream
        self._lines: Optional[asyncio.Queue] = None
        self._exhausted = False

    async def next(self) -> Message:
        if self._lines is None:
            self._start()
        while not self._exhausted:
            line = await self._lines.get()
            if line is None:
                self._exhausted = True
                break
            if line.strip():
                return Message.from_subject(self.user, line.strip())
        raise InputExhausted("stdin closed")

    def _start(self) -> None:
        self._lines = asyncio.Queue()
        reader = threading.Thread(
            target=self._read,
            args=(asyncio.get_running_loop(), self.stream or sys.stdin),
            name='service-io-stdin',
            daemon=True,
        )
        reader.start()

    def _read(self, loop: asyncio.AbstractEventLoop, stream: TextIO) -> None:
        try:
            for line in iter(stream.readline, ''):
                loop.call_soon_threadsafe(self._lines.put_nowait, line)
        except RuntimeError:
            # loop already closed
            return
        except (OSError, ValueError) as e:
            logger.error(f"Reading stdin failed: {e}")
        try:
            loop.call_soon_threadsafe(self._lines.put_nowait, None)
        except RuntimeError:
            # loop already closed
            pass
