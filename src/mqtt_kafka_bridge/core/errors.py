class BridgeError(Exception):
    """
    Base class of the errors raised by the bridge components.
    `fatal` tells the caller whether the bridge can keep running.
    """

    fatal = False


class SetupError(BridgeError):
    """The bridge cannot work at all. The process must exit."""

    fatal = True


class ConnectError(SetupError):
    """Initial connection to the MQTT broker failed."""


class SubscribeError(SetupError):
    """The MQTT broker refused or never confirmed the subscriptions."""


class ProducerError(SetupError):
    """The Kafka producer could not be created or the broker is unreachable."""


class ProduceError(BridgeError):
    """A single record could not be delivered. The message is dropped."""

    def __init__(self, topic: str, reason: str):
        super().__init__(f"Delivery to Kafka topic '{topic}' failed: {reason}")
        self.topic = topic
        self.reason = reason
