"""Dispatchers deliver sensor events to a transport.

Import any dispatcher you need directly from this package::

    from sensor_producer.dispatch import ConsoleDispatcher, KafkaDispatcher
"""

from __future__ import annotations

import importlib
from typing import Any

from sensor_producer.dispatch.base import (
    BrokerConnectionError,
    DeliveryStats,
    Dispatcher,
    DispatcherConfig,
    DispatcherState,
    MessageTooLargeError,
    SubmitResult,
)
from sensor_producer.dispatch.console import ConsoleDispatcher

__all__ = [
    "BrokerConnectionError",
    "ConsoleDispatcher",
    "DeliveryStats",
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherState",
    "MessageTooLargeError",
    "SubmitResult",
]


def __getattr__(name: str) -> Any:
    """Lazy-import the Kafka dispatcher so aiokafka loads only when used."""
    if name == "KafkaDispatcher":
        return importlib.import_module("sensor_producer.dispatch.kafka").KafkaDispatcher
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
