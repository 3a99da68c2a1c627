from __future__ import annotations
import asyncio
import logging

import requests

from service_io.message import Message

logger = logging.getLogger(__name__)

DEFAULT_URL = 'https://api.ipify.org'


class PublicIp:
    """Replies with the public IP address of the machine running the engine."""

    def __init__(self, url: str = DEFAULT_URL, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def lookup(self) -> str:
        resp = requests.get(self.url, timeout=self.timeout)
        resp.raise_for_status()
        address = resp.text.strip()
        if not address:
            raise ValueError(f"Empty answer from {self.url}")
        return address

    async def handle(self, message: Message) -> Message:
        try:
            address = await asyncio.to_thread(self.lookup)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to get IP address: {e}")
            return Message.response(message, args=['error'], body='Failed to get IP address')
        return Message.response(message, body=address)
