"""Broadcaster — where the supervisor sends the events it raises.

Calls happen on the supervisor's dispatch task, so implementations must
return quickly and never block; anything slow (network I/O) belongs behind
a queue, as in :class:`QueueBroadcaster`.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from .models import ChatEvent, ServerEvent, ServerEventType

log = logging.getLogger(__name__)


class Broadcaster(ABC):
    @abstractmethod
    def chat_message(self, event: ChatEvent) -> None:
        ...

    @abstractmethod
    def server_exited(self, code: int | None) -> None:
        ...

    @abstractmethod
    def server_start_failed(self, reason: str) -> None:
        ...


class LoggingBroadcaster(Broadcaster):
    """Writes events to the log. Used by the standalone daemon."""

    def chat_message(self, event: ChatEvent) -> None:
        log.info("<%s> %s", event.speaker, event.message)

    def server_exited(self, code: int | None) -> None:
        log.info("Server exited (code=%s)", code)

    def server_start_failed(self, reason: str) -> None:
        log.error("Server failed to start: %s", reason)


class QueueBroadcaster(Broadcaster):
    """Wraps events as :class:`ServerEvent` and puts them on an asyncio queue.

    A consumer task (see :func:`mc_manager.relay.relay_to_discord`) drains
    the queue at its own pace.  Events raised before a consumer calls
    :meth:`attach` are dropped, so a consumer never starts with a backlog
    of stale events.
    """

    def __init__(self, queue: asyncio.Queue[ServerEvent] | None = None) -> None:
        self.queue: asyncio.Queue[ServerEvent] = queue if queue is not None else asyncio.Queue()
        self.attached = False

    def attach(self) -> asyncio.Queue[ServerEvent]:
        """Mark a consumer as present and return the queue it should drain."""
        self.attached = True
        return self.queue

    def chat_message(self, event: ChatEvent) -> None:
        self._put(ServerEvent(type=ServerEventType.CHAT, chat=event))

    def server_exited(self, code: int | None) -> None:
        self._put(ServerEvent(type=ServerEventType.EXITED, exit_code=code))

    def server_start_failed(self, reason: str) -> None:
        self._put(ServerEvent(type=ServerEventType.START_FAILED, reason=reason))

    def _put(self, event: ServerEvent) -> None:
        if not self.attached:
            log.debug("No relay attached, dropping %s event", event.type.value)
            return
        self.queue.put_nowait(event)
