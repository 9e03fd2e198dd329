from dataclasses import dataclass

from .message import InboundMessage


@dataclass(frozen=True)
class MessageReceived:
    message: InboundMessage


@dataclass(frozen=True)
class ConnectionLost:
    """Emitted by the inbound stream when the broker link drops."""

    reason: str = ""


@dataclass(frozen=True)
class StreamEnded:
    """Last element of the inbound stream after a stop request."""


StreamEvent = MessageReceived | ConnectionLost | StreamEnded
