"""Sensor Producer - simulate a fleet of telemetry sensors and deliver their
readings to Kafka with per-sensor ordering and bounded backpressure.

Quick start::

    from sensor_producer import ProducerConfig, Simulator

    config = ProducerConfig(sensor_count=3, events_per_sec=30, transport="console")
    stats = Simulator(config).run(duration_s=1)
"""

from __future__ import annotations

from sensor_producer.config import ProducerConfig, load_config
from sensor_producer.dispatch.base import DeliveryStats, Dispatcher, DispatcherConfig, SubmitResult
from sensor_producer.models import SensorEvent
from sensor_producer.sensor import SensorSimulator
from sensor_producer.simulator import Simulator

__all__ = [
    "DeliveryStats",
    "Dispatcher",
    "DispatcherConfig",
    "ProducerConfig",
    "SensorEvent",
    "SensorSimulator",
    "Simulator",
    "SubmitResult",
    "load_config",
]

__version__ = "0.1.0"
