"""Dry run - print a small fleet's events to stdout without a broker.

Run::

    python examples/console_dry_run.py
"""

import logging

from sensor_producer import ProducerConfig, Simulator

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)-32s %(levelname)-7s %(message)s")

config = ProducerConfig(sensor_count=3, events_per_sec=6, transport="console", seed=7)
stats = Simulator(config).run(duration_s=3)
print(f"\n{stats.success} delivered, {stats.errors} failed, {stats.dropped} dropped")
