from abc import ABC, abstractmethod


class TopicRouter(ABC):
    @abstractmethod
    def resolve(self, inbound_topic: str) -> str | None:
        """
        Determines Kafka's destination topic given an MQTT topic.
        Returns the Kafka topic as str or None if the message is to be ignored.
        """
        raise NotImplementedError
