import time
from abc import ABC, abstractmethod
from typing import Callable
from loguru import logger
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

DEFAULT_RECONNECT_ATTEMPTS = 12
DEFAULT_RECONNECT_INTERVAL_SECONDS = 5.0


class BoundedReconnect(ABC):
    """
    Provides bounded reconnection for a connection-oriented component.
    This class owns the retry policy (fixed delay, capped attempts) while
    subclasses provide the reconnection attempt itself.
    """

    def __init__(
        self,
        attempts: int = DEFAULT_RECONNECT_ATTEMPTS,
        interval_seconds: float = DEFAULT_RECONNECT_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if attempts < 1:
            raise ValueError("Reconnect 'attempts' must be at least 1.")
        self._reconnect_attempts = attempts
        self._reconnect_interval = interval_seconds
        self._sleep = sleep

    @abstractmethod
    def _perform_reconnect(self) -> bool:
        """Must contain the logic of a single reconnection attempt."""
        raise NotImplementedError

    def _reconnect_aborted(self) -> bool:
        """Returns True when retrying must stop early, e.g. on shutdown."""
        return False

    def _abort_condition(self, retry_state: RetryCallState) -> bool:
        return self._reconnect_aborted()

    def _log_failed_attempt(self, retry_state: RetryCallState):
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            detail = f"Error: {outcome.exception()}"
        else:
            detail = "Broker did not accept the connection"
        logger.warning(
            f"Reconnect attempt {retry_state.attempt_number}/{self._reconnect_attempts} "
            f"for {self.__class__.__name__} failed. {detail}. "
            f"Retrying in {self._reconnect_interval}s..."
        )

    def reconnect(self) -> bool:
        """
        Blocks until the component is reconnected or the attempts are exhausted.
        Waits one interval before every attempt.
        """
        component_name = self.__class__.__name__
        logger.warning(
            f"Connection lost. Waiting to retry connection for {component_name}..."
        )

        retrier = Retrying(
            stop=stop_after_attempt(self._reconnect_attempts) | self._abort_condition,
            wait=wait_fixed(self._reconnect_interval),
            retry=retry_if_exception_type() | retry_if_result(lambda ok: not ok),
            sleep=self._sleep,
            before_sleep=self._log_failed_attempt,
        )

        self._sleep(self._reconnect_interval)
        if self._reconnect_aborted():
            logger.info(f"Reconnection of {component_name} aborted.")
            return False

        try:
            retrier(self._perform_reconnect)
        except RetryError:
            if self._reconnect_aborted():
                logger.info(f"Reconnection of {component_name} aborted.")
            else:
                logger.critical(
                    f"Unable to reconnect {component_name} after "
                    f"{self._reconnect_attempts} attempts."
                )
            return False

        logger.success(f"Successfully reconnected {component_name}.")
        return True
