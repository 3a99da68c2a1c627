from __future__ import annotations
import asyncio
import logging
from typing import Optional, Set

from service_io.interface import Deliver
from service_io.message import Message

logger = logging.getLogger(__name__)

USAGE = "Expected args: <name> <minutes: POSITIVE_NUMBER>"


class Alarm:
    """``alarm <name> <minutes>`` sends back ``<name>`` after that many minutes.

    The reply is late, so it goes through the ``deliver`` callable the engine
    hands over in ``attach``; ``handle`` itself only answers format errors.
    """

    def __init__(self, seconds_per_minute: float = 60.0):
        self.seconds_per_minute = seconds_per_minute
        self._deliver: Optional[Deliver] = None
        self._pending: Set[asyncio.Task] = set()

    def attach(self, deliver: Deliver) -> None:
        self._deliver = deliver

    async def handle(self, message: Message) -> Optional[Message]:
        minutes = _parse_minutes(message.args)
        if minutes is None:
            return Message.response(message, args=['format error'], body=USAGE)

        name = message.args[0]
        response = Message.response(message).with_args([name])
        task = asyncio.ensure_future(self._fire(response, minutes * self.seconds_per_minute))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.info(f"Alarm '{name}' for '{message.origin}' set in {minutes} min")
        return None

    async def _fire(self, response: Message, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._deliver is None:
            logger.warning(f"Alarm '{response.args[0]}' fired but nothing to deliver it to")
            return
        await self._deliver(response)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def close(self) -> None:
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
            logger.info(f"Cancelled {len(tasks)} pending alarm(s)")


def _parse_minutes(args) -> Optional[int]:
    if len(args) != 2:
        return None
    try:
        minutes = int(args[1])
    except ValueError:
        return None
    return minutes if minutes >= 0 else None
