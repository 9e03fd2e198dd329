import queue
import threading
import time
from typing import Callable, Iterator, Sequence
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt
from loguru import logger

from .interfaces import IInboundSession
from ..core.config import flag, number, section
from ..core.errors import ConnectError, SubscribeError
from ..core.events import ConnectionLost, MessageReceived, StreamEnded, StreamEvent
from ..core.message import ConnectionInfo, InboundMessage
from ..core.reconnect import (
    BoundedReconnect,
    DEFAULT_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_INTERVAL_SECONDS,
)
from ..core.state import SessionState

DEFAULT_SERVER_URI = "mqtt://192.168.1.29:1883"
DEFAULT_CLIENT_ID = "mqtt_kafka_bridge"
DEFAULT_MQTT_PORT = 1883
DEFAULT_SUBSCRIPTIONS = [
    {"topic": "Production/#", "qos": 1},
    {"topic": "Consommation/#", "qos": 1},
]
DEFAULT_LAST_WILL = {
    "topic": "Production",
    "payload": "Sync consumer lost connection",
    "qos": 0,
    "retain": False,
}

_MQTT_VERSIONS = {mqtt.MQTTv31: "3.1", mqtt.MQTTv311: "3.1.1", mqtt.MQTTv5: "5.0"}


def parse_server_uri(server_uri: str) -> tuple[str, int]:
    """Splits 'mqtt://host:port' (or 'tcp://host:port', or 'host:port') into host and port."""
    if "://" not in server_uri:
        server_uri = f"mqtt://{server_uri}"
    parts = urlsplit(server_uri)
    if parts.scheme not in ("mqtt", "tcp"):
        raise ValueError(f"Unsupported MQTT URI scheme '{parts.scheme}'.")
    if not parts.hostname:
        raise ValueError(f"MQTT server URI '{server_uri}' has no host.")
    return parts.hostname, parts.port or DEFAULT_MQTT_PORT


def parse_subscriptions(entries: list[dict]) -> list[tuple[str, int]]:
    if not isinstance(entries, list):
        raise ValueError("MQTT config 'subscriptions' must be a list of {topic, qos}.")

    subscriptions = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("topic"):
            raise ValueError(f"MQTT subscription is missing 'topic': {entry}")
        topic = str(entry["topic"])
        qos = number(entry, "qos", 1, int)
        if qos not in (0, 1, 2):
            raise ValueError(f"Invalid QoS {qos} for MQTT subscription '{topic}'.")
        subscriptions.append((topic, qos))
    if not subscriptions:
        raise ValueError("MQTT config 'subscriptions' cannot be empty.")
    return subscriptions


def parse_last_will(config: dict) -> dict:
    last_will = {**DEFAULT_LAST_WILL, **config}
    if not last_will["topic"]:
        raise ValueError("MQTT config 'last_will.topic' cannot be empty.")
    qos = number(last_will, "qos", 0, int)
    if qos not in (0, 1, 2):
        raise ValueError(f"Invalid QoS {qos} for the MQTT last will.")
    return {
        "topic": str(last_will["topic"]),
        "payload": str(last_will["payload"] or ""),
        "qos": qos,
        "retain": flag(last_will, "retain", False),
    }


class MqttSession(IInboundSession, BoundedReconnect):
    """
    Inbound session on an MQTT broker.

    A dedicated network thread runs the paho client loop and hands received
    messages and link losses over to a queue; `messages()` drains that queue
    on the caller's thread, preserving the broker's delivery order.
    Reconnection is never automatic: the consumer decides when to call
    `reconnect()` after a ConnectionLost event.
    """

    def __init__(
        self,
        config: dict,
        client: mqtt.Client | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        reconnect_config = section(config, "reconnect")
        BoundedReconnect.__init__(
            self,
            attempts=number(
                reconnect_config, "attempts", DEFAULT_RECONNECT_ATTEMPTS, int
            ),
            interval_seconds=number(
                reconnect_config, "interval_seconds", DEFAULT_RECONNECT_INTERVAL_SECONDS
            ),
            sleep=sleep or self._wait_unless_stopped,
        )
        self.config = config
        self.server_uri = str(config.get("server_uri") or DEFAULT_SERVER_URI)
        self.host, self.port = parse_server_uri(self.server_uri)
        self.client_id = str(config.get("client_id") or DEFAULT_CLIENT_ID)
        self.keepalive = number(config, "keepalive", 20, int)
        self.clean_session = flag(config, "clean_session", False)
        self.connect_timeout = number(config, "connect_timeout_seconds", 10)
        self.poll_interval = number(config, "poll_interval_seconds", 0.5)
        self.last_will = parse_last_will(section(config, "last_will"))
        self._subscriptions = parse_subscriptions(
            config.get("subscriptions", DEFAULT_SUBSCRIPTIONS)
        )
        self.protocol = mqtt.MQTTv311

        self.client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=self.clean_session,
            protocol=self.protocol,
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_subscribe = self._on_subscribe
        self.client.on_message = self._on_message

        self.state = SessionState.DISCONNECTED
        self.connection_info: ConnectionInfo | None = None

        self._inbox: queue.Queue[StreamEvent] = queue.Queue()
        self._stop_requested = threading.Event()
        self._link_up = threading.Event()
        self._link_lock = threading.Lock()

        self._connack = threading.Event()
        self._connack_failure: str | None = None
        self._suback = threading.Event()
        self._granted: dict[int, list] = {}

        self._network_stop = threading.Event()
        self._network_thread: threading.Thread | None = None

    @property
    def subscriptions(self) -> list[tuple[str, int]]:
        return list(self._subscriptions)

    @property
    def is_connected(self) -> bool:
        return self._link_up.is_set()

    # --- Lifecycle ---

    def connect(self) -> ConnectionInfo:
        self.state = SessionState.CONNECTING
        self.client.will_set(
            self.last_will["topic"],
            self.last_will["payload"],
            self.last_will["qos"],
            self.last_will["retain"],
        )

        logger.info(f"Attempting to connect to MQTT broker at {self.server_uri}...")
        self._connack.clear()
        self._connack_failure = None
        try:
            self.client.connect(self.host, self.port, self.keepalive)
        except (OSError, ValueError) as e:
            self.state = SessionState.DISCONNECTED
            raise ConnectError(
                f"Could not reach MQTT broker at {self.server_uri}. Error: {e}"
            ) from e

        self._start_network_loop()
        try:
            self._await_connack()
        except ConnectionError as e:
            self._stop_network_loop()
            self.state = SessionState.DISCONNECTED
            raise ConnectError(str(e)) from e

        self.state = SessionState.CONNECTED
        logger.success(
            f"Connected to: '{self.connection_info.server_uri}' with MQTT version "
            f"{self.connection_info.mqtt_version}"
        )
        return self.connection_info

    def subscribe_many(self, topics: Sequence[str], qos: Sequence[int]) -> list[int]:
        topics, qos = list(topics), list(qos)
        if not topics or len(topics) != len(qos):
            raise ValueError("Topics and QoS must be non-empty parallel sequences.")

        logger.info(f"Subscribing to topics {topics} with requested QoS: {qos}...")
        try:
            granted = self._request_subscriptions(topics, qos)
        except SubscribeError as e:
            logger.error(f"Error subscribing to topics: {e}")
            self.disconnect()
            raise

        if granted != qos:
            logger.warning(f"QoS granted: {granted} differs from requested {qos}.")
        else:
            logger.success(f"QoS granted: {granted}")
        return granted

    def _request_subscriptions(self, topics: list[str], qos: list[int]) -> list[int]:
        self._suback.clear()
        try:
            result, mid = self.client.subscribe(list(zip(topics, qos)))
        except (OSError, ValueError) as e:
            raise SubscribeError(f"Subscribe request failed: {e}") from e

        if result != mqtt.MQTT_ERR_SUCCESS:
            raise SubscribeError(
                f"Subscribe request failed: {mqtt.error_string(result)}"
            )
        if not self._suback.wait(self.connect_timeout):
            raise SubscribeError(f"No SUBACK received within {self.connect_timeout}s")

        reason_codes = self._granted.pop(mid, None)
        if reason_codes is None or len(reason_codes) != len(topics):
            raise SubscribeError("Bad SUBACK response")

        rejected = [t for t, code in zip(topics, reason_codes) if code.is_failure]
        if rejected:
            raise SubscribeError(f"Broker rejected subscriptions to {rejected}")
        return [code.value for code in reason_codes]

    def messages(self) -> Iterator[StreamEvent]:
        while not self._stop_requested.is_set():
            try:
                event = self._inbox.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if self._stop_requested.is_set():
                break
            yield event
        yield StreamEnded()

    def reconnect(self) -> bool:
        if self._stop_requested.is_set():
            return False

        self.state = SessionState.RECONNECTING
        if BoundedReconnect.reconnect(self):
            self.state = SessionState.CONNECTED
            return True

        with self._link_lock:
            self._link_up.clear()
        self._stop_network_loop()
        if not self._stop_requested.is_set():
            self.state = SessionState.CLOSED
        return False

    def _perform_reconnect(self) -> bool:
        if self._stop_requested.is_set():
            return False

        self._stop_network_loop()
        self._connack.clear()
        self._connack_failure = None

        result = self.client.reconnect()
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise ConnectionError(f"MQTT reconnect failed: {mqtt.error_string(result)}")

        self._start_network_loop()
        self._await_connack()

        if not self.connection_info.session_present:
            self._restore_subscriptions()
        return True

    def _restore_subscriptions(self):
        """Subscribes again when the broker did not keep the persistent session."""
        logger.warning("MQTT broker did not keep the session. Subscribing again...")
        topics = [topic for topic, _ in self._subscriptions]
        qos = [qos for _, qos in self._subscriptions]
        try:
            granted = self._request_subscriptions(topics, qos)
        except SubscribeError as e:
            with self._link_lock:
                self._link_up.clear()
            raise ConnectionError(f"Could not restore subscriptions: {e}") from e
        logger.info(f"Subscriptions restored. QoS granted: {granted}")

    def _reconnect_aborted(self) -> bool:
        return self._stop_requested.is_set()

    def _wait_unless_stopped(self, seconds: float):
        # request_stop() runs in a signal handler, so the flag is polled instead of waited on.
        deadline = time.monotonic() + seconds
        while not self._stop_requested.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(remaining, self.poll_interval))

    def request_stop(self) -> None:
        # Runs inside the SIGINT handler: no logging, no blocking locks.
        if self._stop_requested.is_set():
            return
        self._stop_requested.set()
        self.state = SessionState.SHUTTING_DOWN

    def disconnect(self) -> None:
        logger.info("MQTT: Disconnecting from broker...")
        with self._link_lock:
            self._link_up.clear()
        self._stop_network_loop()
        try:
            self.client.disconnect()
            logger.info("MQTT: Disconnected.")
        except Exception as e:
            logger.warning(f"MQTT: Exception during disconnection: {e}")
        self.state = SessionState.CLOSED

    # --- Network thread ---

    def _start_network_loop(self):
        self._network_stop.clear()
        self._network_thread = threading.Thread(
            target=self._network_loop, name=f"mqtt-{self.client_id}", daemon=True
        )
        self._network_thread.start()

    def _stop_network_loop(self):
        self._network_stop.set()
        thread = self._network_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=self.poll_interval + 5)
            if thread.is_alive():
                logger.warning("MQTT: Network thread did not terminate gracefully.")
        self._network_thread = None

    def _network_loop(self):
        while not self._network_stop.is_set():
            result = self.client.loop(timeout=self.poll_interval)
            if result != mqtt.MQTT_ERR_SUCCESS:
                self._link_lost(mqtt.error_string(result))
                break

    def _await_connack(self):
        if not self._connack.wait(self.connect_timeout):
            raise ConnectionError(f"No CONNACK received within {self.connect_timeout}s")
        if self._connack_failure:
            raise ConnectionError(self._connack_failure)

    def _link_lost(self, reason: str):
        with self._link_lock:
            if not self._link_up.is_set():
                return
            self._link_up.clear()

        if self._stop_requested.is_set():
            return
        self.state = SessionState.DISCONNECTED
        logger.warning(f"Unexpected MQTT disconnection. Reason: {reason}")
        self._inbox.put(ConnectionLost(reason))

    # --- paho callbacks ---

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self._connack_failure = f"MQTT broker refused the connection: {reason_code}"
        else:
            self.connection_info = ConnectionInfo(
                server_uri=self.server_uri,
                mqtt_version=_MQTT_VERSIONS.get(self.protocol, str(self.protocol)),
                session_present=bool(flags.session_present),
            )
            with self._link_lock:
                self._link_up.set()
        self._connack.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        self._link_lost(str(reason_code))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        self._granted[mid] = list(reason_code_list)
        self._suback.set()

    def _on_message(self, client, userdata, msg):
        if self._stop_requested.is_set():
            return
        self._inbox.put(
            MessageReceived(
                InboundMessage(topic=msg.topic, payload=msg.payload, qos=msg.qos)
            )
        )
