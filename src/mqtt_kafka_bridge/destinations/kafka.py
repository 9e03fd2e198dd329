import uuid
from datetime import datetime, timezone
from typing import Callable

from confluent_kafka import KafkaException, Producer
from loguru import logger

from .interfaces import IDestination
from ..core.config import number
from ..core.errors import ProduceError, ProducerError
from ..core.message import DeliveryAck, OutboundRecord

DEFAULT_BOOTSTRAP_SERVERS = "192.168.1.29:9092"
DELIVERY_SYNC = "sync"
DELIVERY_ASYNC = "async"


class KafkaDestination(IDestination):
    """
    Forwards payloads to a Kafka cluster through a single long-lived producer.

    Two acknowledgment policies are supported through the `delivery` option:
    `sync` blocks until one replica acknowledges the record (bounded by
    `ack_timeout_seconds`), `async` submits and only logs the delivery report.
    Failed records are never retried by the bridge.
    """

    def __init__(
        self,
        config: dict,
        producer_factory: Callable[[dict], Producer] = Producer,
    ):
        self.config = config
        self.bootstrap_servers = str(config.get("bootstrap_servers") or DEFAULT_BOOTSTRAP_SERVERS)
        self.client_id = str(config.get("client_id") or "mqtt_kafka_bridge")
        self.delivery = config.get("delivery", DELIVERY_SYNC)
        if self.delivery not in (DELIVERY_SYNC, DELIVERY_ASYNC):
            raise ValueError(
                f"Kafka config 'delivery' must be '{DELIVERY_SYNC}' or '{DELIVERY_ASYNC}', "
                f"got '{self.delivery}'."
            )
        self.ack_timeout = number(config, "ack_timeout_seconds", 1.0)
        self.message_timeout_ms = number(config, "message_timeout_ms", 5000, int)
        self.connect_timeout = number(config, "connect_timeout_seconds", 10)
        self.flush_timeout = number(config, "flush_timeout_seconds", 10)

        self._producer_factory = producer_factory
        self.producer: Producer | None = None

    def _producer_config(self) -> dict:
        producer_config = {
            "bootstrap.servers": self.bootstrap_servers,
            "client.id": self.client_id,
            # only the partition leader has to ack the record
            "acks": "1",
        }
        if self.delivery == DELIVERY_SYNC:
            ack_timeout_ms = int(self.ack_timeout * 1000)
            producer_config["linger.ms"] = 0
            producer_config["request.timeout.ms"] = ack_timeout_ms
            producer_config["message.timeout.ms"] = ack_timeout_ms
        else:
            producer_config["message.timeout.ms"] = self.message_timeout_ms
        return producer_config

    def connect(self) -> None:
        # Creating a producer is costly: it is done once and reused for every message.
        if self.producer is not None:
            return

        try:
            self.producer = self._producer_factory(self._producer_config())
            # If the broker is not available, this call will timeout and raise an exception.
            self.producer.list_topics(timeout=self.connect_timeout)
        except KafkaException as e:
            self.producer = None
            raise ProducerError(
                f"Kafka connection failed: Could not reach broker at {self.bootstrap_servers}. "
                f"Error: {e}. Check configuration or broker status."
            ) from e
        except Exception as e:
            logger.exception("An unexpected error occurred while creating the Kafka producer")
            self.producer = None
            raise ProducerError(f"Kafka producer could not be created: {e}") from e

        logger.success(
            f"Successfully connected to Kafka at {self.bootstrap_servers} "
            f"(delivery policy: {self.delivery})"
        )

    def forward(self, topic: str, payload: bytes) -> DeliveryAck:
        if self.producer is None:
            raise ProduceError(topic, "Kafka producer is not connected")

        record = OutboundRecord(
            topic=topic,
            payload=payload,
            key=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
        )
        logger.debug(f"Attempting to send record {record.key} to Kafka topic '{topic}'...")

        if self.delivery == DELIVERY_SYNC:
            return self._send_and_wait(record)
        return self._send(record)

    def _produce(self, record: OutboundRecord, on_delivery: Callable):
        try:
            self.producer.produce(
                record.topic,
                value=record.payload,
                key=record.key,
                timestamp=record.timestamp_ms,
                on_delivery=on_delivery,
            )
        except BufferError as e:
            # Serve pending delivery reports to free room in the local queue
            self.producer.poll(0)
            raise ProduceError(record.topic, f"Local producer queue is full: {e}") from e
        except KafkaException as e:
            raise ProduceError(record.topic, str(e)) from e

    def _send_and_wait(self, record: OutboundRecord) -> DeliveryAck:
        report = {}

        def on_delivery(err, msg):
            report["error"] = err
            report["message"] = msg

        self._produce(record, on_delivery)
        self.producer.flush(self.ack_timeout)

        if "error" not in report:
            self._drop_pending()
            raise ProduceError(
                record.topic, f"No acknowledgment within {self.ack_timeout}s"
            )
        if report["error"] is not None:
            raise ProduceError(record.topic, str(report["error"]))

        msg = report["message"]
        return DeliveryAck(
            topic=msg.topic(),
            key=record.key,
            partition=msg.partition(),
            offset=msg.offset(),
            confirmed=True,
        )

    def _send(self, record: OutboundRecord) -> DeliveryAck:
        self._produce(record, self._delivery_report)
        self.producer.poll(0)
        return DeliveryAck(topic=record.topic, key=record.key)

    def _drop_pending(self):
        """Removes timed-out records from the producer so they are not sent later."""
        try:
            self.producer.purge(in_queue=True, in_flight=True, blocking=False)
            self.producer.poll(0)
        except KafkaException as e:
            logger.warning(f"Could not purge pending Kafka records: {e}")

    @staticmethod
    def _delivery_report(err, msg):
        if err is not None:
            logger.error(f"Kafka delivery failed for topic '{msg.topic()}': {err}")
        else:
            logger.debug(
                f"Record delivered to Kafka topic '{msg.topic()}' "
                f"[partition {msg.partition()}, offset {msg.offset()}]"
            )

    def stop(self) -> None:
        if self.producer is None:
            return

        logger.info("Flushing Kafka producer...")
        try:
            remaining = self.producer.flush(self.flush_timeout)
            if remaining:
                logger.warning(f"{remaining} Kafka records were not delivered before shutdown.")
            logger.info("Kafka: Stopped.")
        except Exception as e:
            logger.warning(f"Exception during Kafka producer shutdown: {e}")
        self.producer = None
