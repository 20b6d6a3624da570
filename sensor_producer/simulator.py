"""Simulator - top-level orchestrator that runs a fleet of sensors against
one shared dispatcher and coordinates shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import signal
import threading

from sensor_producer.config import ProducerConfig
from sensor_producer.dispatch.base import DeliveryStats, Dispatcher
from sensor_producer.dispatch.factory import create_dispatcher
from sensor_producer.sensor import SensorSimulator

__all__ = ["Simulator"]

logger = logging.getLogger("sensor_producer")


class Simulator:
    """Runs ``sensor_count`` sensors, each at ``events_per_sec / sensor_count``.

    Example::

        from sensor_producer import ProducerConfig, Simulator

        sim = Simulator(ProducerConfig(sensor_count=100, events_per_sec=1000))
        stats = sim.run(duration_s=30)

    Parameters:
        config:
            Validated producer settings.
        dispatcher:
            Delivery path shared by every sensor.  Built from
            ``config.transport`` when omitted.
    """

    def __init__(self, config: ProducerConfig, *, dispatcher: Dispatcher | None = None) -> None:
        self.config = config
        self.dispatcher = dispatcher if dispatcher is not None else create_dispatcher(config)

        seeds = random.Random(config.seed) if config.seed is not None else None
        rate = config.events_per_sensor
        self.sensors: list[SensorSimulator] = [
            SensorSimulator(
                f"sensor_{i + 1}",
                rate,
                self.dispatcher,
                seed=seeds.getrandbits(64) if seeds is not None else None,
            )
            for i in range(config.sensor_count)
        ]
        self._stop: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_requested = False

    @property
    def sensor_count(self) -> int:
        return len(self.sensors)

    def stop(self) -> None:
        """Signal every sensor to finish its current tick and exit.

        Safe to call from any thread.  A request made while no run is active
        (including while the dispatcher is still connecting) ends the next
        run as soon as it starts.
        """
        stop, loop = self._stop, self._loop
        if stop is None or loop is None:
            self._stop_requested = True
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            stop.set()
        else:
            loop.call_soon_threadsafe(stop.set)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, duration_s: float | None = None) -> DeliveryStats:
        """Blocking entry point - starts the event loop.

        Works inside environments that already have a running event loop
        (Jupyter, IPython) by running on a dedicated thread with its own loop.

        Parameters:
            duration_s: Stop automatically after this many seconds.  ``None``
                        falls back to ``config.run_duration_sec``.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None and loop.is_running():
            result: list[DeliveryStats] = []
            exc: list[BaseException | None] = [None]

            def _target() -> None:
                try:
                    result.append(asyncio.run(self.run_async(duration_s=duration_s)))
                except BaseException as e:
                    exc[0] = e

            t = threading.Thread(target=_target, daemon=True)
            t.start()
            t.join()
            if exc[0] is not None:
                raise exc[0]
            return result[0]

        return asyncio.run(self.run_async(duration_s=duration_s))

    async def run_async(self, duration_s: float | None = None) -> DeliveryStats:
        """Async entry point - returns the final delivery stats.

        Raises:
            BrokerConnectionError: the dispatcher could not connect.  No
                sensor has started at that point.
        """
        if duration_s is None:
            duration_s = self.config.duration_s

        loop = asyncio.get_running_loop()
        stop = self._stop = asyncio.Event()
        self._loop = loop
        try:
            self._apply_stop_request(stop)
            await self.dispatcher.start()
            # stop() from another thread may have raced the assignments above.
            self._apply_stop_request(stop)
            await self._run_fleet(loop, stop, duration_s)
        finally:
            self._stop = None
            self._loop = None

        stats = self.dispatcher.stats()
        logger.info(
            "Final stats: %d sent, %d errors, %d dropped (buffer full), %d unserialisable",
            stats.success,
            stats.errors,
            stats.dropped,
            stats.serialization_errors,
        )
        return stats

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run_fleet(self, loop: asyncio.AbstractEventLoop, stop: asyncio.Event, duration_s: float | None) -> None:
        # NotImplementedError: Windows.  RuntimeError: not the main thread.
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                loop.add_signal_handler(sig, self._on_signal, sig)
                installed.append(sig)

        timer = loop.call_later(duration_s, self._on_duration_expired, duration_s) if duration_s else None

        logger.info(
            "Starting %d sensors at %.2f events/sec each (%.0f events/sec total)",
            self.sensor_count,
            self.config.events_per_sensor,
            self.config.events_per_sec,
        )
        sensor_tasks = [asyncio.create_task(s.run(stop), name=s.sensor_id) for s in self.sensors]
        reporter = asyncio.create_task(self._report_stats(stop), name="stats-reporter")

        try:
            await stop.wait()
        finally:
            stop.set()
            if timer is not None:
                timer.cancel()
            for sig in installed:
                loop.remove_signal_handler(sig)

            logger.info("Waiting for sensors to stop...")
            results = await asyncio.gather(*sensor_tasks, return_exceptions=True)
            for task, outcome in zip(sensor_tasks, results):
                if isinstance(outcome, Exception):
                    logger.error("Sensor %s crashed: %r", task.get_name(), outcome)
            reporter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reporter

            await self.dispatcher.close()

    def _apply_stop_request(self, stop: asyncio.Event) -> None:
        if self._stop_requested:
            self._stop_requested = False
            stop.set()

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Received signal %s, shutting down...", sig.name)
        self.stop()

    def _on_duration_expired(self, duration_s: float) -> None:
        logger.info("Run duration reached (%.1fs), shutting down...", duration_s)
        self.stop()

    async def _report_stats(self, stop: asyncio.Event) -> None:
        interval = self.config.stats_interval_s
        while not stop.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=interval)
            if stop.is_set():
                return
            stats = self.dispatcher.stats()
            logger.info(
                "Stats: %d sent, %d errors, %d dropped, %d pending",
                stats.success,
                stats.errors,
                stats.dropped,
                self.dispatcher.pending,
            )
