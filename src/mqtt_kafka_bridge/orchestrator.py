from dataclasses import dataclass
from loguru import logger

from .core.errors import ProduceError, SetupError
from .core.events import ConnectionLost, MessageReceived, StreamEnded, StreamEvent
from .core.message import InboundMessage
from .destinations.interfaces import IDestination
from .routing.interfaces import TopicRouter
from .sources.interfaces import IInboundSession


@dataclass
class BridgeStats:
    """Counters reported when the bridge stops."""

    received: int = 0
    forwarded: int = 0
    dropped: int = 0
    failed: int = 0
    reconnects: int = 0


class Orchestrator:
    """
    Runs the bridge loop: drains the inbound session's stream on the calling
    thread, resolves every message through the router and hands mapped
    messages to the destination, one at a time and in arrival order.
    """

    def __init__(
        self,
        session: IInboundSession,
        router: TopicRouter,
        destination: IDestination,
    ):
        self._session = session
        self._router = router
        self._destination = destination
        self.stats = BridgeStats()

    def start(self):
        """Connects both ends of the bridge. Any SetupError propagates to the caller."""
        logger.info("Starting the Bridge...")
        self._destination.connect()
        self._session.connect()

        topics = [topic for topic, _ in self._session.subscriptions]
        qos = [qos for _, qos in self._session.subscriptions]
        self._session.subscribe_many(topics, qos)
        logger.success(f"Bridge is running. Waiting for messages on topics {topics}...")

    def run(self):
        try:
            self.start()
        except SetupError:
            self._destination.stop()
            raise

        try:
            self._message_loop()
        finally:
            self.stop()

    def _message_loop(self):
        """Consumes stream events until the stream ends or reconnection is exhausted."""
        for event in self._session.messages():
            if not self._dispatch(event):
                break

    def _dispatch(self, event: StreamEvent) -> bool:
        """Handles one stream event. Returns False when the loop must end."""
        if isinstance(event, MessageReceived):
            self._forward_message(event.message)
            return True

        if isinstance(event, ConnectionLost):
            if self._session.is_connected:
                logger.warning("Message stream interrupted while still connected. Stopping.")
                return False
            if not self._session.reconnect():
                return False
            self.stats.reconnects += 1
            return True

        if isinstance(event, StreamEnded):
            logger.info("Stop requested. Message stream ended.")
            return False

        logger.warning(f"Ignoring unknown stream event: {event!r}")
        return True

    def _forward_message(self, message: InboundMessage):
        """Forwards a single message to its mapped topic, dropping it on failure."""
        self.stats.received += 1
        destination_topic = self._router.resolve(message.topic)
        if destination_topic is None:
            self.stats.dropped += 1
            logger.debug(f"No mapping for MQTT topic '{message.topic}'. Ignoring message.")
            return

        try:
            self._destination.forward(destination_topic, message.payload)
        except ProduceError as e:
            self.stats.failed += 1
            logger.error(f"Message from MQTT topic '{message.topic}' dropped. {e}")
            return
        except Exception:
            self.stats.failed += 1
            logger.exception(
                f"An unhandled error occurred while forwarding a message from '{message.topic}'."
            )
            return

        self.stats.forwarded += 1
        payload_str = message.payload.decode("utf-8", errors="replace")
        logger.info(f"{destination_topic}:{payload_str}")

    def request_stop(self):
        """Asks the bridge loop to end. Safe to call from a signal handler."""
        self._session.request_stop()

    def stop(self):
        logger.info("Shutting down the bridge...")
        if self._session.is_connected:
            self._session.disconnect()
        self._destination.stop()
        logger.info(
            f"Bridge stats: received={self.stats.received}, forwarded={self.stats.forwarded}, "
            f"dropped={self.stats.dropped}, failed={self.stats.failed}, "
            f"reconnects={self.stats.reconnects}"
        )
        logger.success("Bridge shut down successfully.")
