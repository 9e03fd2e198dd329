from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class InboundMessage:
    """
    Represents an immutable message received from the MQTT broker.
    It is consumed once by the bridge loop and never persisted.
    """

    topic: str
    payload: bytes
    qos: int = 0


@dataclass(frozen=True)
class OutboundRecord:
    """A record submitted to the Kafka broker, built fresh for every forwarded message."""

    topic: str
    payload: bytes
    key: str | None = None
    timestamp: datetime | None = None

    @property
    def timestamp_ms(self) -> int | None:
        if self.timestamp is None:
            return None
        return int(self.timestamp.timestamp() * 1000)


@dataclass(frozen=True)
class DeliveryAck:
    """
    Outcome of a successful forward.
    `confirmed` is only True when the broker acknowledged the record.
    """

    topic: str
    key: str | None = None
    partition: int | None = None
    offset: int | None = None
    confirmed: bool = False


@dataclass(frozen=True)
class ConnectionInfo:
    server_uri: str
    mqtt_version: str
    session_present: bool = False
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
