import pytest

from mqtt_kafka_bridge.core.errors import ConnectError, ProducerError
from mqtt_kafka_bridge.core.events import ConnectionLost, MessageReceived, StreamEnded
from mqtt_kafka_bridge.core.message import InboundMessage
from mqtt_kafka_bridge.orchestrator import Orchestrator
from mqtt_kafka_bridge.routing.router import MappingTopicRouter
from mqtt_kafka_bridge.sources.mqtt import MqttSession
from tests.fakes import (
    TOPIC_TABLE,
    FakeDestination,
    FakeMqttClient,
    ScriptedSession,
    msg,
    produce_error,
)


@pytest.fixture
def router():
    return MappingTopicRouter({"mappings": TOPIC_TABLE})


def received(topic, payload):
    return MessageReceived(msg(topic, payload))


class TestBridgeLoop:
    def test_round_trip_with_reconnect(self, router):
        session = ScriptedSession(
            [
                received("Production/metrics/W", "120"),
                received("Unknown/topic", "x"),
                ConnectionLost("keepalive timeout"),
                received("Consommation/metrics/ImportEnergy", "45"),
            ],
            reconnect_results=[True],
        )
        destination = FakeDestination()

        Orchestrator(session, router, destination).run()

        assert destination.forwarded == [("production_w", b"120"), ("import_w", b"45")]
        assert session.reconnect_calls == 1

    @pytest.mark.parametrize("inbound, outbound", list(TOPIC_TABLE.items()))
    def test_mapped_topic_is_forwarded_once(self, router, inbound, outbound):
        session = ScriptedSession([received(inbound, "7.5")])
        destination = FakeDestination()

        Orchestrator(session, router, destination).run()

        assert destination.forwarded == [(outbound, b"7.5")]

    def test_unmapped_topics_are_ignored(self, router):
        session = ScriptedSession(
            [received("Unknown/topic", "x"), received("Production/metrics/Wh", "1")]
        )
        destination = FakeDestination()
        bridge = Orchestrator(session, router, destination)

        bridge.run()

        assert destination.forwarded == []
        assert bridge.stats.received == 2
        assert bridge.stats.dropped == 2

    def test_payload_bytes_are_forwarded_untouched(self, router):
        payload = b"\x00\xff{\"W\": 120}"
        session = ScriptedSession(
            [MessageReceived(InboundMessage("Production/metrics/W", payload, 1))]
        )
        destination = FakeDestination()

        Orchestrator(session, router, destination).run()

        assert destination.forwarded == [("production_w", payload)]

    def test_failed_forward_is_dropped_and_loop_continues(self, router, log_messages):
        session = ScriptedSession(
            [
                received("Production/metrics/W", "120"),
                received("Production/metrics/W", "121"),
            ]
        )
        destination = FakeDestination(failures=[produce_error()])
        bridge = Orchestrator(session, router, destination)

        bridge.run()

        assert destination.forwarded == [("production_w", b"121")]
        assert bridge.stats.failed == 1
        assert bridge.stats.forwarded == 1
        assert any(
            "Production/metrics/W" in m and "No acknowledgment" in m for m in log_messages
        )

    def test_unexpected_forward_error_does_not_crash_the_loop(self, router):
        session = ScriptedSession(
            [
                received("Production/metrics/W", "120"),
                received("Consommation/metrics/ExportEnergy", "3"),
            ]
        )
        destination = FakeDestination(failures=[RuntimeError("boom")])

        Orchestrator(session, router, destination).run()

        assert destination.forwarded == [("export_w", b"3")]

    def test_exhausted_reconnect_ends_the_loop(self, router):
        session = ScriptedSession(
            [ConnectionLost(), received("Production/metrics/W", "120")],
            reconnect_results=[False],
        )
        destination = FakeDestination()

        Orchestrator(session, router, destination).run()

        assert destination.forwarded == []
        assert session.reconnect_calls == 1
        assert session.disconnect_calls == 0
        assert destination.stop_calls == 1

    def test_stream_interrupted_while_connected_ends_without_reconnect(self, router):
        session = ScriptedSession([received("Production/metrics/W", "120")])
        bridge = Orchestrator(session, router, FakeDestination())
        bridge.start()

        assert bridge._dispatch(ConnectionLost()) is False
        assert session.reconnect_calls == 0

    def test_stream_end_disconnects_gracefully(self, router):
        session = ScriptedSession([received("Production/metrics/W", "120"), StreamEnded()])
        destination = FakeDestination()

        Orchestrator(session, router, destination).run()

        assert session.disconnect_calls == 1
        assert destination.stop_calls == 1

    def test_request_stop_ends_the_stream(self, router):
        session = ScriptedSession(
            [
                received("Production/metrics/W", "120"),
                received("Consommation/metrics/ImportEnergy", "45"),
            ]
        )
        destination = FakeDestination(on_forward=lambda d: session.request_stop())

        Orchestrator(session, router, destination).run()

        assert destination.forwarded == [("production_w", b"120")]
        assert session.disconnect_calls == 1

    def test_request_stop_is_delegated_to_the_session(self, router):
        session = ScriptedSession([])
        Orchestrator(session, router, FakeDestination()).request_stop()
        assert session.stop_requested


class TestSetup:
    def test_destination_connects_before_session_and_subscribes(self, router):
        session = ScriptedSession([])
        destination = FakeDestination()
        calls = []
        destination.calls = calls
        session.calls = calls

        Orchestrator(session, router, destination).start()

        assert calls == ["destination.connect", "session.connect"]
        assert session.subscribed == (["Production/#", "Consommation/#"], [1, 1])

    def test_producer_failure_aborts_before_connecting_the_session(self, router):
        session = ScriptedSession([])
        destination = FakeDestination()
        destination.connect_error = ProducerError("Kafka unreachable")

        with pytest.raises(ProducerError):
            Orchestrator(session, router, destination).run()
        assert session.calls == []
        assert destination.stop_calls == 1

    def test_connect_failure_propagates(self, router):
        session = ScriptedSession([])
        session.connect_error = ConnectError("MQTT unreachable")

        with pytest.raises(ConnectError):
            Orchestrator(session, router, FakeDestination()).run()


class TestWithMqttSession:
    def make_session(self, client):
        return MqttSession(
            {"poll_interval_seconds": 0.02, "connect_timeout_seconds": 0.5},
            client=client,
            sleep=lambda seconds: None,
        )

    def test_round_trip_through_the_network_thread(self, router):
        client = FakeMqttClient(reconnect_results=[True])
        session = self.make_session(client)
        client.actions = [
            lambda: client.deliver("Production/metrics/W", b"120"),
            lambda: client.deliver("Unknown/topic", b"x"),
            client.drop,
            lambda: client.deliver("Consommation/metrics/ImportEnergy", b"45"),
        ]

        def stop_after_second(destination):
            if len(destination.forwarded) == 2:
                session.request_stop()

        destination = FakeDestination(on_forward=stop_after_second)
        bridge = Orchestrator(session, router, destination)

        bridge.run()

        assert destination.forwarded == [("production_w", b"120"), ("import_w", b"45")]
        assert client.reconnect_calls == 1
        assert bridge.stats.reconnects == 1
        assert client.disconnect_calls == 1

    def test_twelve_failed_reconnects_end_the_bridge(self, router):
        client = FakeMqttClient()
        session = self.make_session(client)
        client.actions = [client.drop]
        destination = FakeDestination()

        Orchestrator(session, router, destination).run()

        assert client.reconnect_calls == 12
        assert client.disconnect_calls == 0
        assert destination.stop_calls == 1
