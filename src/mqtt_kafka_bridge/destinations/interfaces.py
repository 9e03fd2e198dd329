from abc import ABC, abstractmethod
from ..core.message import DeliveryAck


class IConnectable(ABC):
    """Defines a contract for components that have a connect/stop lifecycle."""

    @abstractmethod
    def connect(self) -> None:
        """Establishes the connection to the endpoint. Raises SetupError on failure."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Stops the component and cleans up resources."""
        raise NotImplementedError


class IDestination(IConnectable):
    """Defines a contract for the broker the bridge forwards messages to."""

    @abstractmethod
    def forward(self, topic: str, payload: bytes) -> DeliveryAck:
        """Delivers one payload to a destination topic. Raises ProduceError on failure."""
        raise NotImplementedError
