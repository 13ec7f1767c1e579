"""Transport contract between the engine and the message bus."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from deliberation.models import Message

logger = logging.getLogger(__name__)


class Transport(ABC):
    """What the engine needs from the conversation's message bus."""

    @abstractmethod
    def broadcast(self, message: Message) -> None:
        """Append a system/directive message to the conversation."""
        ...

    @abstractmethod
    def force_speak(self, agent_id: str, reason: str) -> None:
        """Ask a participant to produce its next message, bypassing the floor queue."""
        ...


class InMemoryTransport(Transport):
    """Single-process transport: keeps the transcript and delivers every
    message to subscribers synchronously, in arrival order."""

    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.forced: list[tuple[str, str]] = []
        self._subscribers: list[Callable[[Message], None]] = []

    def subscribe(self, callback: Callable[[Message], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def deliver(self, message: Message) -> None:
        """Publish a participant message."""
        self.messages.append(message)
        for callback in list(self._subscribers):
            callback(message)

    def broadcast(self, message: Message) -> None:
        self.deliver(message)

    def force_speak(self, agent_id: str, reason: str) -> None:
        logger.debug("Forcing %s to speak: %s", agent_id, reason)
        self.forced.append((agent_id, reason))
