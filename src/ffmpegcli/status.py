#!/usr/bin/python3

import asyncio
import dataclasses

from .models.messages import BaseMessage
from .output import BaseMessageHandler


@dataclasses.dataclass
class StatusManager:
    """
    Queue of status messages published while ffmpeg runs.

    Producers never wait on handlers; slow terminal output can't stall progress parsing.
    """

    queue: asyncio.Queue = dataclasses.field(default_factory=asyncio.Queue)
    closed: asyncio.Event = dataclasses.field(default_factory=asyncio.Event)

    def publish(self, message: BaseMessage) -> None:
        if self.closed.is_set():
            raise RuntimeError("status manager is closed")
        self.queue.put_nowait(message)

    def close(self) -> None:
        self.closed.set()


async def status_handler(
    handlers: list[BaseMessageHandler],
    status: StatusManager,
) -> None:
    # dispatches messages until the manager is closed and everything queued was handled
    while not status.closed.is_set() or not status.queue.empty():
        try:
            message = await asyncio.wait_for(status.queue.get(), timeout=0.25)
        except TimeoutError:
            continue
        for handler in handlers:
            await handler.handle_message(message)
