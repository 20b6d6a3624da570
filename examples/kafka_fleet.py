"""Drive a Kafka topic with 100 sensors at 1,000 events/sec for 30 seconds.

Requires a reachable broker::

    docker run -p 9092:9092 apache/kafka:latest
    python examples/kafka_fleet.py
"""

import logging
import sys

from sensor_producer import DispatcherConfig, ProducerConfig, Simulator
from sensor_producer.dispatch import BrokerConnectionError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)-32s %(levelname)-7s %(message)s")

config = ProducerConfig(
    kafka_brokers="localhost:9092",
    kafka_topic="sensor_metrics",
    sensor_count=100,
    events_per_sec=1000,
    delivery=DispatcherConfig(queue_size=2048),
)

try:
    stats = Simulator(config).run(duration_s=30)
except BrokerConnectionError as exc:
    print(f"Broker unavailable: {exc}")
    sys.exit(1)

print(f"{stats.success} delivered, {stats.errors} failed, {stats.dropped} dropped at the queue")
