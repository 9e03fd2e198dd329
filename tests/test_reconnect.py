import pytest

from mqtt_kafka_bridge.core.reconnect import BoundedReconnect


class FlakyComponent(BoundedReconnect):
    def __init__(self, outcomes, **kwargs):
        self.sleeps = []
        super().__init__(sleep=self.sleeps.append, **kwargs)
        self.outcomes = list(outcomes)
        self.attempts = 0
        self.aborted = False

    def _perform_reconnect(self) -> bool:
        self.attempts += 1
        outcome = self.outcomes.pop(0) if self.outcomes else False
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def _reconnect_aborted(self) -> bool:
        return self.aborted


def test_first_attempt_success_waits_one_interval():
    component = FlakyComponent([True])
    assert component.reconnect() is True
    assert component.attempts == 1
    assert component.sleeps == [5.0]


def test_retries_exceptions_and_refusals_until_success():
    component = FlakyComponent([ConnectionRefusedError("down"), False, True])
    assert component.reconnect() is True
    assert component.attempts == 3
    assert component.sleeps == [5.0, 5.0, 5.0]


def test_gives_up_after_twelve_attempts_with_fixed_delay():
    component = FlakyComponent([OSError("unreachable")] * 20)
    assert component.reconnect() is False
    assert component.attempts == 12
    assert component.sleeps == [5.0] * 12


def test_attempts_and_interval_are_configurable():
    component = FlakyComponent([], attempts=3, interval_seconds=0.5)
    assert component.reconnect() is False
    assert component.attempts == 3
    assert component.sleeps == [0.5] * 3


def test_abort_stops_retrying():
    component = FlakyComponent([False] * 12)

    def abort_after_second_attempt() -> bool:
        return component.attempts >= 2

    component._reconnect_aborted = abort_after_second_attempt
    assert component.reconnect() is False
    assert component.attempts == 2


def test_abort_before_first_attempt():
    component = FlakyComponent([True])
    component.aborted = True
    assert component.reconnect() is False
    assert component.attempts == 0


def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        FlakyComponent([], attempts=0)
