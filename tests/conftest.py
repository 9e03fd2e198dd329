import pytest
from loguru import logger


@pytest.fixture
def log_messages():
    """Collects the messages logged through loguru during a test."""
    messages = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
