"""Kafka dispatcher - delivers sensor events to an Apache Kafka topic.

The producer runs in idempotent mode with ``acks="all"`` so broker-side
retries never duplicate or reorder a partition.  Events are keyed by
``sensor_id``, which pins every sensor to one partition.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from sensor_producer.dispatch.base import BrokerConnectionError, Dispatcher, OutboundMessage

__all__ = ["RESERVED_PRODUCER_OPTIONS", "KafkaDispatcher"]

logger = logging.getLogger("sensor_producer.dispatch.kafka")

# Set by the dispatcher itself; ``extra_producer_config`` may not replace them.
RESERVED_PRODUCER_OPTIONS = frozenset(
    {
        "bootstrap_servers",
        "client_id",
        "acks",
        "enable_idempotence",
        "compression_type",
        "linger_ms",
        "max_request_size",
        "retry_backoff_ms",
        "security_protocol",
        "sasl_mechanism",
        "sasl_plain_username",
        "sasl_plain_password",
    }
)


class KafkaDispatcher(Dispatcher):
    """Publish sensor events as JSON messages to a Kafka topic.

    Parameters:
        bootstrap_servers: Comma-separated broker addresses, or a list.
        topic: Kafka topic name.
        client_id: Client name reported to the brokers.
        security_protocol: ``"PLAINTEXT"``, ``"SSL"``, ``"SASL_PLAINTEXT"``,
                           ``"SASL_SSL"``.
        sasl_mechanism: ``"PLAIN"``, ``"SCRAM-SHA-256"``, etc.
        sasl_username / sasl_password: SASL credentials.
        extra_producer_config: Additional kwargs forwarded to
                               ``AIOKafkaProducer``.  Keys in
                               :data:`RESERVED_PRODUCER_OPTIONS` are rejected.
        config / **kwargs: Forwarded to :class:`Dispatcher`.

    Raises:
        ValueError: *extra_producer_config* names a reserved option.
    """

    def __init__(
        self,
        *,
        bootstrap_servers: str | list[str] = "localhost:9092",
        topic: str = "sensor_metrics",
        client_id: str = "sensor-producer",
        security_protocol: str = "PLAINTEXT",
        sasl_mechanism: str | None = None,
        sasl_username: str | None = None,
        sasl_password: str | None = None,
        extra_producer_config: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(topic=topic, **kwargs)
        if isinstance(bootstrap_servers, str):
            bootstrap_servers = [s.strip() for s in bootstrap_servers.split(",") if s.strip()]
        self._bootstrap_servers = bootstrap_servers

        extra = dict(extra_producer_config or {})
        clash = sorted(RESERVED_PRODUCER_OPTIONS.intersection(extra))
        if clash:
            raise ValueError(f"extra_producer_config may not override {', '.join(clash)}")

        self._producer_config: dict[str, Any] = {
            **extra,
            "bootstrap_servers": bootstrap_servers,
            "client_id": client_id,
            "acks": "all",
            "enable_idempotence": True,
            "compression_type": None,
            "linger_ms": self.config.flush_frequency_ms,
            "max_request_size": self.config.max_message_bytes,
            "retry_backoff_ms": self.config.retry_backoff_ms,
        }
        if security_protocol != "PLAINTEXT":
            self._producer_config["security_protocol"] = security_protocol
        if sasl_mechanism:
            self._producer_config["sasl_mechanism"] = sasl_mechanism
        if sasl_username:
            self._producer_config["sasl_plain_username"] = sasl_username
        if sasl_password:
            self._producer_config["sasl_plain_password"] = sasl_password

        self._producer: AIOKafkaProducer | None = None

    async def _connect(self) -> None:
        logger.info("Connecting to Kafka at %s ...", ",".join(self._bootstrap_servers))
        producer = AIOKafkaProducer(**self._producer_config)
        try:
            await producer.start()
        except KafkaError as exc:
            with contextlib.suppress(KafkaError):
                await producer.stop()
            raise BrokerConnectionError(f"cannot connect to Kafka at {self._bootstrap_servers}: {exc}") from exc
        self._producer = producer
        logger.info("Connected to Kafka - publishing to topic '%s'", self.topic)

    async def _send(self, message: OutboundMessage) -> asyncio.Future[Any]:
        if self._producer is None:
            raise RuntimeError("KafkaDispatcher is not connected")
        return await self._producer.send(self.topic, value=message.value, key=message.key)

    def _is_retriable(self, exc: BaseException) -> bool:
        return isinstance(exc, KafkaError) and exc.retriable

    async def _flush(self) -> None:
        if self._producer:
            await self._producer.flush()

    async def _close(self) -> None:
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer closed")
