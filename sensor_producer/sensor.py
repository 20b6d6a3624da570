"""Sensor simulator - one independent random-walk process per sensor.

Each simulator owns its RNG and walk state; nothing in here is shared with
another sensor, so no locking is needed between them.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random

from sensor_producer.dispatch.base import Dispatcher, SubmitResult
from sensor_producer.models import SensorEvent

__all__ = ["SensorSimulator"]

logger = logging.getLogger("sensor_producer.sensor")


class SensorSimulator:
    """Simulates a single sensor emitting readings at a fixed rate.

    Every tick reports ``base_value`` plus uniform noise in ``[-1, 1)`` and
    then moves ``base_value`` by ``drift``, giving a noisy signal on top of
    a slow trend.

    Parameters:
        sensor_id: Identifier and partition key, e.g. ``"sensor_1"``.
        events_per_sec: Target emission rate.
        dispatcher: Receives every generated event via ``submit``.
        seed: Seed for the private RNG.  ``None`` seeds from OS entropy.
    """

    def __init__(
        self,
        sensor_id: str,
        events_per_sec: float,
        dispatcher: Dispatcher,
        *,
        seed: int | None = None,
    ) -> None:
        if events_per_sec <= 0:
            raise ValueError(f"events_per_sec must be > 0, got {events_per_sec}")
        self.sensor_id = sensor_id
        self.events_per_sec = events_per_sec
        self.dispatcher = dispatcher
        self.rng = random.Random(seed)
        self.base_value = 20 + self.rng.random() * 80
        self.drift = (self.rng.random() - 0.5) * 0.1

        self.ticks = 0
        self.accepted = 0
        self.rejected = 0

    @property
    def interval(self) -> float:
        """Seconds between ticks."""
        return 1.0 / self.events_per_sec

    def tick(self) -> SensorEvent:
        """Produce one reading and advance the walk."""
        value = self.base_value + (self.rng.random() - 0.5) * 2.0
        self.base_value += self.drift
        self.ticks += 1
        return SensorEvent.create(self.sensor_id, value)

    def emit(self) -> SubmitResult:
        """Generate one event and hand it to the dispatcher.

        Rejected events are dropped; the simulator never blocks or retries.
        """
        result = self.dispatcher.submit(self.tick())
        if result.accepted:
            self.accepted += 1
        else:
            self.rejected += 1
            logger.debug("%s: event dropped (%s)", self.sensor_id, result.value)
        return result

    async def run(self, stop: asyncio.Event) -> None:
        """Emit on a fixed schedule until *stop* is set.

        Deadlines are absolute on the loop clock, so lateness in one tick
        does not shift the following ones.  Ticks missed entirely (e.g. a
        stalled loop) are skipped rather than fired in a burst.
        """
        loop = asyncio.get_running_loop()
        interval = self.interval
        next_tick = loop.time() + interval
        while not stop.is_set():
            delay = next_tick - loop.time()
            if delay > 0:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop.wait(), timeout=delay)
                if stop.is_set():
                    break

            self.emit()

            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                next_tick += (int((now - next_tick) / interval) + 1) * interval

        logger.debug("%s stopped after %d ticks (%d dropped)", self.sensor_id, self.ticks, self.rejected)
