from loguru import logger
from .interfaces import TopicRouter


class MappingTopicRouter(TopicRouter):
    """
    Routes MQTT topics through a static table of exact topic names.
    Topics missing from the table are not interesting and get dropped.
    """

    def __init__(self, config: dict):
        mappings = config.get("mappings") or {}
        if not isinstance(mappings, dict) or not mappings:
            raise ValueError("Routing config 'mappings' cannot be empty.")

        for inbound, outbound in mappings.items():
            if not isinstance(inbound, str) or not isinstance(outbound, str):
                raise ValueError(
                    f"Invalid routing entry '{inbound}' -> '{outbound}': topics must be strings."
                )
            if not inbound or not outbound:
                raise ValueError("Routing topics cannot be empty strings.")

        self._mappings: dict[str, str] = dict(mappings)
        logger.debug(f"Topic router initialized with {len(self._mappings)} mappings.")

    @property
    def mappings(self) -> dict[str, str]:
        return dict(self._mappings)

    def resolve(self, inbound_topic: str) -> str | None:
        return self._mappings.get(inbound_topic)
