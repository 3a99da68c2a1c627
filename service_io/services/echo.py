from service_io.message import Message


class Echo:
    """Returns the received message unchanged."""

    async def handle(self, message: Message) -> Message:
        return message
