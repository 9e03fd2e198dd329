from abc import ABC, abstractmethod
from typing import Iterator, Sequence

from ..core.events import StreamEvent
from ..core.message import ConnectionInfo


class IInboundSession(ABC):
    """
    Defines the contract of the inbound broker session the bridge consumes from.
    The session owns its connection state; the bridge loop only observes it
    through the events of the message stream and `is_connected`.
    """

    @property
    @abstractmethod
    def subscriptions(self) -> list[tuple[str, int]]:
        """The (topic, qos) pairs the session is configured to subscribe to."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def connect(self) -> ConnectionInfo:
        """Establishes the session. Raises ConnectError on failure."""
        raise NotImplementedError

    @abstractmethod
    def subscribe_many(self, topics: Sequence[str], qos: Sequence[int]) -> list[int]:
        """Subscribes to all topics and returns the granted QoS. Raises SubscribeError."""
        raise NotImplementedError

    @abstractmethod
    def messages(self) -> Iterator[StreamEvent]:
        """Returns the stream of inbound events."""
        raise NotImplementedError

    @abstractmethod
    def reconnect(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def request_stop(self) -> None:
        """Ends the message stream. Must be safe to call from a signal handler."""
        raise NotImplementedError

    @abstractmethod
    def disconnect(self) -> None:
        raise NotImplementedError
