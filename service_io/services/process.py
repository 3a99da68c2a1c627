from __future__ import annotations
import asyncio
import logging

from service_io.message import Message

logger = logging.getLogger(__name__)


class Process:
    """Runs ``args[0]`` with the remaining args and replies with its stdout.

    Any program on the host can be started, so register it with a whitelist.
    """

    async def handle(self, message: Message) -> Message:
        if not message.args:
            return Message.response(message, args=['format error'],
                                    body='You need to specify a process to run')

        cmd = ' '.join(message.args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *message.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await proc.communicate()
        except OSError as e:
            logger.error(f"Error while running '{cmd}': {e}")
            return Message.response(message, args=['error'], body=f'Error while running: {cmd}')

        try:
            body = stdout.decode('utf-8')
        except UnicodeDecodeError:
            body = '[binary]'
        logger.info(f"Process '{cmd}' for '{message.origin}' exited with {proc.returncode}")
        return Message.response(message, args=[f'Terminated ({proc.returncode}): {cmd}'], body=body)
