"""CLI entry point for the sensor producer.

Usage::

    sensor-producer run --sensors 1000 --rate 5000 --duration 60
    sensor-producer run --config producer.yaml
    sensor-producer run --transport console --sensors 3 --rate 3 -d 5
    sensor-producer show-config --config producer.yaml
    sensor-producer init-config --output producer.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap

import yaml
from pydantic import ValidationError

# ---------------------------------------------------------------------------
# Sample YAML config template for init-config
# ---------------------------------------------------------------------------
_SAMPLE_CONFIG = """\
# Sensor producer configuration
# Environment variables (KAFKA_BROKERS, KAFKA_TOPIC, SENSOR_COUNT,
# EVENTS_PER_SEC, RUN_DURATION_SEC, LOG_LEVEL) are overridden by this file,
# and command-line flags override both.

producer:
  sensor_count: 1000                  # simulated sensors: sensor_1 .. sensor_N
  events_per_sec: 5000                # aggregate rate, split evenly per sensor
  run_duration_sec: 0                 # 0 = run until Ctrl-C / SIGTERM
  stats_interval_s: 5                 # progress log period
  transport: kafka                    # kafka or console
  # seed: 42                          # reproducible random walks
  # log_level: INFO                   # DEBUG, INFO, WARNING, ERROR

kafka:
  brokers: localhost:9092             # comma-separated host:port list
  topic: sensor_metrics
  # client_id: sensor-producer
  # security_protocol: SASL_SSL       # PLAINTEXT, SSL, SASL_PLAINTEXT, SASL_SSL
  # sasl_mechanism: SCRAM-SHA-256
  # sasl_username: producer
  # sasl_password: change-me
  # producer_options:                 # extra AIOKafkaProducer kwargs
  #   request_timeout_ms: 30000

delivery:
  queue_size: 256                     # outbound queue; full queue drops events
  retry_max: 5
  retry_backoff_ms: 100
  flush_messages: 100
  flush_frequency_ms: 100
  max_message_bytes: 1000000
  close_timeout_s: 10
"""

EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 1


# ======================================================================
# Main entry point
# ======================================================================


def main(argv: list[str] | None = None) -> None:
    epilog = textwrap.dedent("""\
        examples:
          sensor-producer run --sensors 1000 --rate 5000 --duration 60
          sensor-producer run --config producer.yaml
          sensor-producer run --transport console --sensors 3 --rate 3 -d 5
          sensor-producer show-config --config producer.yaml
          sensor-producer init-config --output producer.yaml
    """)

    parser = argparse.ArgumentParser(
        prog="sensor-producer",
        description="Simulate telemetry sensors and deliver their readings to Kafka.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", title="commands")

    # -- run ---------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        help="Run the sensor fleet.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_config_arguments(run_parser)

    # -- show-config -------------------------------------------------------
    show_parser = subparsers.add_parser(
        "show-config",
        help="Print the resolved configuration as YAML and exit.",
    )
    _add_config_arguments(show_parser)

    # -- init-config -------------------------------------------------------
    init_parser = subparsers.add_parser(
        "init-config",
        help="Generate a sample YAML configuration file.",
    )
    init_parser.add_argument(
        "--output",
        "-o",
        type=str,
        default=None,
        help="Write config to this file instead of stdout.",
    )

    # Flag-only invocation (e.g. `sensor-producer --sensors 10`) means "run".
    _known_commands = {"run", "show-config", "init-config"}
    raw_args = argv if argv is not None else sys.argv[1:]
    if raw_args and raw_args[0] not in _known_commands and raw_args[0] not in ("-h", "--help"):
        raw_args = ["run", *list(raw_args)]

    args = parser.parse_args(raw_args)

    if args.command is None:
        parser.print_help()
        return

    # -- Dispatch ----------------------------------------------------------
    if args.command == "run":
        _cmd_run(args)
    elif args.command == "show-config":
        _cmd_show_config(args)
    elif args.command == "init-config":
        _cmd_init_config(args.output)
    else:
        parser.print_help()


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML config file.",
    )
    parser.add_argument(
        "--brokers",
        "-b",
        type=str,
        default=None,
        help="Comma-separated Kafka bootstrap servers (env: KAFKA_BROKERS).",
    )
    parser.add_argument(
        "--topic",
        "-t",
        type=str,
        default=None,
        help="Kafka topic (env: KAFKA_TOPIC).",
    )
    parser.add_argument(
        "--sensors",
        "-n",
        type=int,
        default=None,
        help="Number of simulated sensors (env: SENSOR_COUNT).",
    )
    parser.add_argument(
        "--rate",
        "-r",
        type=float,
        default=None,
        help="Aggregate events per second across all sensors (env: EVENTS_PER_SEC).",
    )
    parser.add_argument(
        "--duration",
        "-d",
        type=float,
        default=None,
        help="Run duration in seconds, 0 = until interrupted (env: RUN_DURATION_SEC).",
    )
    parser.add_argument(
        "--transport",
        type=str,
        default=None,
        choices=["kafka", "console"],
        help="Delivery transport (default: kafka).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Fleet seed for reproducible sensor walks.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (env: LOG_LEVEL, default: INFO).",
    )


def _resolve_config(args: argparse.Namespace):
    """Load the layered config, exiting with a readable message on error."""
    from sensor_producer.config import ConfigError, load_config

    overrides = {
        "kafka_brokers": args.brokers,
        "kafka_topic": args.topic,
        "sensor_count": args.sensors,
        "events_per_sec": args.rate,
        "run_duration_sec": args.duration,
        "transport": args.transport,
        "seed": args.seed,
        "log_level": args.log_level,
    }
    try:
        return load_config(args.config, overrides=overrides)
    except (FileNotFoundError, ConfigError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)
    except ValidationError as exc:
        print(f"Error: invalid configuration\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)


# ======================================================================
# Command implementations
# ======================================================================


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the producer."""
    from sensor_producer.dispatch.base import BrokerConnectionError
    from sensor_producer.simulator import Simulator

    config = _resolve_config(args)
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(name)-32s %(levelname)-7s %(message)s",
        datefmt="%H:%M:%S",
    )

    logger = logging.getLogger("sensor_producer")
    logger.info("Starting sensor producer")
    logger.info("  Kafka brokers: %s", config.kafka_brokers)
    logger.info("  Topic: %s", config.kafka_topic)
    logger.info("  Sensors: %d", config.sensor_count)
    logger.info("  Target rate: %.0f events/sec", config.events_per_sec)
    logger.info("  Duration: %.0f seconds (0 = infinite)", config.run_duration_sec)

    try:
        Simulator(config).run()
    except BrokerConnectionError as exc:
        logger.error("Failed to create producer: %s", exc)
        sys.exit(EXIT_CONNECTION_ERROR)


def _cmd_show_config(args: argparse.Namespace) -> None:
    config = _resolve_config(args)
    print(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False), end="")


def _cmd_init_config(output_path: str | None) -> None:
    if output_path:
        from pathlib import Path

        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_text(_SAMPLE_CONFIG)
        print(f"Sample config written to {output_path}")
    else:
        print(_SAMPLE_CONFIG)


# ======================================================================
if __name__ == "__main__":
    main()
