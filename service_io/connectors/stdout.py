from __future__ import annotations
import sys
from typing import Optional, TextIO

from colorama import Fore, Style, just_fix_windows_console

from service_io.logging_utils import short
from service_io.message import Message


class DebugStdout:
    """Prints every message it receives, for trying services out by hand."""

    name = 'stdout'

    def __init__(self, stream: Optional[TextIO] = None, attachment_preview: int = 40):
        just_fix_windows_console()
        self.stream = stream
        self.attachment_preview = attachment_preview

    def format(self, message: Message) -> str:
        lines = [
            f"{Fore.GREEN}{Style.BRIGHT}>>> {message.key or '(no key)'}{Style.RESET_ALL}"
            f" {Fore.CYAN}to {message.origin}{Style.RESET_ALL}",
        ]
        if message.args:
            lines.append(f"{Fore.YELLOW}args:{Style.RESET_ALL} {' '.join(message.args)}")
        if message.body:
            lines.append(message.body.rstrip('\n'))
        for name, data in message.attachments.items():
            lines.append(f"{Fore.MAGENTA}[{name}]{Style.RESET_ALL} {len(data)} bytes "
                         f"{short(data, self.attachment_preview)}")
        return '\n'.join(lines)

    async def send(self, message: Message) -> None:
        stream = self.stream or sys.stdout
        print(self.format(message), file=stream, flush=True)
