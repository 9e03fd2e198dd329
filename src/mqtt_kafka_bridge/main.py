import sys
import os
import signal
import yaml
import argparse
from loguru import logger

from .orchestrator import Orchestrator
from .core.config import section
from .core.errors import SetupError
from .sources.mqtt import MqttSession
from .destinations.kafka import KafkaDestination
from .routing.router import MappingTopicRouter


def create_parser():
    parser = argparse.ArgumentParser(
        description="MQTT to Kafka bridge",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "server_uri",
        nargs="?",
        default=None,
        help="MQTT broker URI, overrides 'source.mqtt.server_uri'",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="./config.yaml",
        metavar="FILE",
        help="YAML config file",
    )

    return parser


def load_config(path: str) -> dict:
    config_path = os.path.join(os.getcwd(), path)

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.critical(f"Config file not found in '{config_path}'")
        sys.exit(1)
    except yaml.YAMLError as e:
        logger.critical(f"Syntax error in YAML file '{config_path}': {e}")
        sys.exit(1)

    if not isinstance(config, dict):
        logger.critical(f"Config file '{config_path}' must contain a mapping.")
        sys.exit(1)

    logger.info("Config loaded successfully.")
    return config


def setup_logging(config: dict):
    """Replaces loguru's default sink. Raises ValueError on an unknown level name."""
    log_level = str(section(config, "logging").get("level") or "INFO").upper()
    logger.level(log_level)
    logger.remove()
    logger.add(sys.stderr, level=log_level, colorize=True)
    logger.info(f"Logger level set to: {log_level}")


def build_orchestrator(config: dict, server_uri: str | None = None) -> Orchestrator:
    """Creates the bridge components from the configuration. Raises ValueError on invalid config."""
    mqtt_config = dict(section(section(config, "source"), "mqtt"))
    if server_uri:
        mqtt_config["server_uri"] = server_uri

    session = MqttSession(mqtt_config)
    destination = KafkaDestination(section(section(config, "destination"), "kafka"))
    router = MappingTopicRouter(section(config, "routing"))
    return Orchestrator(session, router, destination)


def install_signal_handler(orchestrator: Orchestrator):
    def _handle_interrupt(signum, frame):
        orchestrator.request_stop()

    signal.signal(signal.SIGINT, _handle_interrupt)


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    try:
        setup_logging(config)
        bridge = build_orchestrator(config, args.server_uri)
    except (ValueError, TypeError) as e:
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    install_signal_handler(bridge)

    try:
        bridge.run()
    except SetupError as e:
        logger.critical(f"{e}. Exiting.")
        sys.exit(1)

    return 0


if __name__ == "__main__":
    sys.exit(main())
