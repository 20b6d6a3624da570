"""Dispatcher factory - builds the configured transport.

Transports are registered by name and imported lazily, so the console
transport works without contacting a broker::

    dispatcher = create_dispatcher(config)   # config.transport == "kafka"
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any

from sensor_producer.dispatch.base import Dispatcher

if TYPE_CHECKING:
    from sensor_producer.config import ProducerConfig

__all__ = ["available_transports", "create_dispatcher", "register_dispatcher"]

logger = logging.getLogger("sensor_producer.dispatch.factory")

# Registry of transport names → (module_path, class_name)
_DISPATCHER_REGISTRY: dict[str, tuple[str, str]] = {
    "kafka": ("sensor_producer.dispatch.kafka", "KafkaDispatcher"),
    "console": ("sensor_producer.dispatch.console", "ConsoleDispatcher"),
}


def available_transports() -> list[str]:
    """Names accepted by ``ProducerConfig.transport``."""
    return sorted(_DISPATCHER_REGISTRY)


def create_dispatcher(config: ProducerConfig, **kwargs: Any) -> Dispatcher:
    """Create the dispatcher named by ``config.transport``.

    Broker settings are only passed to the Kafka transport; extra keyword
    arguments go to the dispatcher constructor unchanged.

    Returns:
        A :class:`Dispatcher` in the ``CREATED`` state (not yet connected).
    """
    transport = config.transport.lower().strip()
    if transport not in _DISPATCHER_REGISTRY:
        raise ValueError(f"Unknown transport '{transport}'.  Available: {available_transports()}")

    module_path, class_name = _DISPATCHER_REGISTRY[transport]
    cls = getattr(importlib.import_module(module_path), class_name)

    if transport == "kafka":
        password = config.kafka_sasl_password
        kwargs.setdefault("bootstrap_servers", config.brokers)
        kwargs.setdefault("client_id", config.kafka_client_id)
        kwargs.setdefault("security_protocol", config.kafka_security_protocol)
        kwargs.setdefault("sasl_mechanism", config.kafka_sasl_mechanism)
        kwargs.setdefault("sasl_username", config.kafka_sasl_username)
        kwargs.setdefault("sasl_password", password.get_secret_value() if password is not None else None)
        kwargs.setdefault("extra_producer_config", config.kafka_producer_options)
    kwargs.setdefault("topic", config.kafka_topic)
    kwargs.setdefault("config", config.delivery)

    logger.debug("Creating %s for topic '%s'", class_name, kwargs["topic"])
    return cls(**kwargs)


def register_dispatcher(name: str, module_path: str, class_name: str) -> None:
    """Register a custom transport for config-driven instantiation.

    Example::

        register_dispatcher("pulsar", "mypackage.dispatch", "PulsarDispatcher")
    """
    _DISPATCHER_REGISTRY[name.lower().strip()] = (module_path, class_name)
