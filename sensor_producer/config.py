"""Configuration loader for the sensor producer.

Settings are layered, later sources winning::

    defaults  <  environment  <  YAML file  <  explicit overrides (CLI flags)

Environment variables: ``KAFKA_BROKERS``, ``KAFKA_TOPIC``, ``SENSOR_COUNT``,
``EVENTS_PER_SEC``, ``RUN_DURATION_SEC``, ``LOG_LEVEL``.

YAML layout:

.. code-block:: yaml

    producer:
      sensor_count: 1000
      events_per_sec: 5000
      run_duration_sec: 0
      stats_interval_s: 5
      transport: kafka
      log_level: INFO

    kafka:
      brokers: localhost:9092
      topic: sensor_metrics
      security_protocol: SASL_SSL     # optional, with sasl_mechanism / sasl_username / sasl_password
      producer_options:               # extra AIOKafkaProducer kwargs
        request_timeout_ms: 30000

    delivery:
      queue_size: 256
      retry_max: 5
      retry_backoff_ms: 100
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator

from sensor_producer.dispatch.base import DispatcherConfig

__all__ = ["ConfigError", "ProducerConfig", "load_config"]

logger = logging.getLogger("sensor_producer.config")

_ENV_KEYS: dict[str, str] = {
    "KAFKA_BROKERS": "kafka_brokers",
    "KAFKA_TOPIC": "kafka_topic",
    "SENSOR_COUNT": "sensor_count",
    "EVENTS_PER_SEC": "events_per_sec",
    "RUN_DURATION_SEC": "run_duration_sec",
    "LOG_LEVEL": "log_level",
}

# YAML ``kafka:`` key -> ProducerConfig field
_KAFKA_KEYS: dict[str, str] = {
    "topic": "kafka_topic",
    "client_id": "kafka_client_id",
    "security_protocol": "kafka_security_protocol",
    "sasl_mechanism": "kafka_sasl_mechanism",
    "sasl_username": "kafka_sasl_username",
    "sasl_password": "kafka_sasl_password",
    "producer_options": "kafka_producer_options",
}


class ConfigError(ValueError):
    """The configuration file exists but cannot be used."""


class ProducerConfig(BaseModel):
    """Validated producer settings.

    Attributes:
        kafka_brokers: Comma-separated ``host:port`` bootstrap list.
        kafka_topic: Destination topic.
        kafka_client_id: Client name reported to the brokers.
        kafka_security_protocol: ``PLAINTEXT``, ``SSL``, ``SASL_PLAINTEXT``
            or ``SASL_SSL``.
        kafka_sasl_mechanism / kafka_sasl_username / kafka_sasl_password:
            SASL authentication, all optional.
        kafka_producer_options: Extra ``AIOKafkaProducer`` keyword arguments.
            The delivery settings the dispatcher enforces cannot be set here.
        sensor_count: Number of simulated sensors.
        events_per_sec: Aggregate rate, split evenly across sensors.
        run_duration_sec: Stop after this many seconds; ``0`` runs until
            interrupted.
        stats_interval_s: Period of the progress log line.
        transport: A registered transport name, ``"kafka"`` or ``"console"``
            out of the box.
        seed: Fleet seed for reproducible walks; ``None`` for entropy.
        log_level: Logging level name.
        delivery: Queue / retry / flush settings for the dispatcher.
    """

    kafka_brokers: str = "localhost:9092"
    kafka_topic: str = "sensor_metrics"
    kafka_client_id: str = "sensor-producer"
    kafka_security_protocol: str = "PLAINTEXT"
    kafka_sasl_mechanism: str | None = None
    kafka_sasl_username: str | None = None
    kafka_sasl_password: SecretStr | None = None
    kafka_producer_options: dict[str, Any] = Field(default_factory=dict)
    sensor_count: int = Field(default=1000, gt=0)
    events_per_sec: float = Field(default=5000, gt=0)
    run_duration_sec: float = Field(default=0, ge=0)
    stats_interval_s: float = Field(default=5.0, gt=0)
    transport: str = "kafka"
    seed: int | None = None
    log_level: str = "INFO"
    delivery: DispatcherConfig = Field(default_factory=DispatcherConfig)

    @field_validator("kafka_brokers", "kafka_topic")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("kafka_security_protocol")
    @classmethod
    def _known_protocol(cls, value: str) -> str:
        value = value.upper()
        if value not in ("PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"):
            raise ValueError(f"unknown security protocol '{value}'")
        return value

    @field_validator("kafka_producer_options")
    @classmethod
    def _no_reserved_options(cls, value: dict[str, Any]) -> dict[str, Any]:
        from sensor_producer.dispatch.kafka import RESERVED_PRODUCER_OPTIONS

        clash = sorted(RESERVED_PRODUCER_OPTIONS.intersection(value))
        if clash:
            raise ValueError(f"cannot override {', '.join(clash)}")
        return value

    @field_validator("transport")
    @classmethod
    def _known_transport(cls, value: str) -> str:
        from sensor_producer.dispatch.factory import available_transports

        value = value.lower().strip()
        if value not in available_transports():
            raise ValueError(f"unknown transport '{value}', expected one of {available_transports()}")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"unknown log level '{value}'")
        return value

    @property
    def brokers(self) -> list[str]:
        return [b.strip() for b in self.kafka_brokers.split(",") if b.strip()]

    @property
    def events_per_sensor(self) -> float:
        return self.events_per_sec / self.sensor_count

    @property
    def duration_s(self) -> float | None:
        return self.run_duration_sec or None


def load_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ProducerConfig:
    """Build a :class:`ProducerConfig` from every configuration source.

    Raises:
        FileNotFoundError: *path* was given but does not exist.
        ConfigError: *path* is not valid YAML or is not laid out in sections.
        pydantic.ValidationError: a value is missing or invalid.
    """
    values: dict[str, Any] = _env_values(os.environ if environ is None else environ)
    if path is not None:
        yaml_values = _yaml_values(path)
        delivery = {**values.pop("delivery", {}), **yaml_values.pop("delivery", {})}
        values.update(yaml_values)
        if delivery:
            values["delivery"] = delivery
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    config = ProducerConfig.model_validate(values)
    logger.debug("Resolved config: %s", config.model_dump(mode="json"))
    return config


def _env_values(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for env_key, field in _ENV_KEYS.items():
        raw = environ.get(env_key)
        if raw:
            values[field] = raw
    return values


def _section(raw: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"{path}: section '{name}' must be a mapping, got {type(section).__name__}")
    return dict(section)


def _yaml_values(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with path.open("r") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{path}: expected a mapping of sections, got {type(raw).__name__}")

    values: dict[str, Any] = _section(raw, "producer", path)

    kafka_section = _section(raw, "kafka", path)
    brokers = kafka_section.get("brokers")
    if isinstance(brokers, list):
        brokers = ",".join(str(b) for b in brokers)
    if brokers is not None:
        values["kafka_brokers"] = brokers
    for key, field in _KAFKA_KEYS.items():
        if key in kafka_section:
            values[field] = kafka_section[key]

    delivery = _section(raw, "delivery", path)
    if delivery:
        values["delivery"] = delivery

    logger.info("Loaded config file %s", path)
    return values
