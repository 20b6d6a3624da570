"""Tests for sensor_producer.sensor - random walk, emission and the tick loop."""

from __future__ import annotations

import asyncio
import time
from unittest.mock import MagicMock

import pytest

from sensor_producer.dispatch.base import Dispatcher, SubmitResult
from sensor_producer.sensor import SensorSimulator

# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------


def _dispatcher(result: SubmitResult = SubmitResult.ACCEPTED) -> MagicMock:
    dispatcher = MagicMock(spec=Dispatcher)
    dispatcher.submit.return_value = result
    return dispatcher


# -----------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------


class TestSensorConstruction:
    """Initial walk state and validation."""

    def test_initial_state_ranges(self) -> None:
        for seed in range(50):
            sim = SensorSimulator("sensor_1", 10.0, _dispatcher(), seed=seed)
            assert 20.0 <= sim.base_value < 100.0
            assert -0.05 <= sim.drift < 0.05

    def test_interval(self) -> None:
        sim = SensorSimulator("sensor_1", 4.0, _dispatcher())
        assert sim.interval == pytest.approx(0.25)

    @pytest.mark.parametrize("rate", [0, -1.0])
    def test_non_positive_rate_rejected(self, rate: float) -> None:
        with pytest.raises(ValueError, match="events_per_sec"):
            SensorSimulator("sensor_1", rate, _dispatcher())

    def test_same_seed_same_walk(self) -> None:
        a = SensorSimulator("sensor_1", 10.0, _dispatcher(), seed=7)
        b = SensorSimulator("sensor_1", 10.0, _dispatcher(), seed=7)
        assert [a.tick().value for _ in range(20)] == [b.tick().value for _ in range(20)]

    def test_rngs_are_private(self) -> None:
        a = SensorSimulator("sensor_1", 10.0, _dispatcher(), seed=1)
        b = SensorSimulator("sensor_2", 10.0, _dispatcher(), seed=2)
        assert a.rng is not b.rng
        assert a.base_value != b.base_value


# -----------------------------------------------------------------------
# tick / emit
# -----------------------------------------------------------------------


class TestSensorTick:
    """Per-tick value generation."""

    def test_value_within_one_of_base(self) -> None:
        sim = SensorSimulator("sensor_1", 10.0, _dispatcher(), seed=3)
        for _ in range(1000):
            base = sim.base_value
            event = sim.tick()
            assert abs(event.value - base) <= 1.0
            assert sim.base_value == pytest.approx(base + sim.drift)

    def test_drift_is_bounded(self) -> None:
        sim = SensorSimulator("sensor_1", 10.0, _dispatcher(), seed=11)
        start = sim.base_value
        ticks = 5000
        for _ in range(ticks):
            sim.tick()
        assert sim.ticks == ticks
        assert abs(sim.base_value - start) <= ticks * abs(sim.drift) + 1e-9

    def test_tick_builds_event_for_sensor(self) -> None:
        event = SensorSimulator("sensor_9", 10.0, _dispatcher()).tick()
        assert event.sensor_id == "sensor_9"

    def test_emit_submits_event(self) -> None:
        dispatcher = _dispatcher()
        sim = SensorSimulator("sensor_1", 10.0, dispatcher)
        assert sim.emit() is SubmitResult.ACCEPTED
        dispatcher.submit.assert_called_once()
        assert dispatcher.submit.call_args[0][0].sensor_id == "sensor_1"
        assert sim.accepted == 1

    def test_emit_drops_on_buffer_full(self) -> None:
        sim = SensorSimulator("sensor_1", 10.0, _dispatcher(SubmitResult.BUFFER_FULL))
        for _ in range(3):
            assert sim.emit() is SubmitResult.BUFFER_FULL
        assert sim.rejected == 3
        assert sim.accepted == 0
        assert sim.ticks == 3


# -----------------------------------------------------------------------
# run
# -----------------------------------------------------------------------


class TestSensorRun:
    """The timer-driven loop and cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_run_emits_at_target_rate(self) -> None:
        dispatcher = _dispatcher()
        sim = SensorSimulator("sensor_1", 100.0, dispatcher)
        stop = asyncio.Event()
        task = asyncio.create_task(sim.run(stop))
        await asyncio.sleep(0.5)
        stop.set()
        await task
        assert 35 <= sim.ticks <= 55
        assert dispatcher.submit.call_count == sim.ticks

    @pytest.mark.asyncio
    async def test_stop_before_first_tick(self) -> None:
        dispatcher = _dispatcher()
        sim = SensorSimulator("sensor_1", 0.1, dispatcher)
        stop = asyncio.Event()
        task = asyncio.create_task(sim.run(stop))
        await asyncio.sleep(0.05)

        started = time.perf_counter()
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)
        assert time.perf_counter() - started < 0.5
        dispatcher.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_stopped_returns_immediately(self) -> None:
        stop = asyncio.Event()
        stop.set()
        sim = SensorSimulator("sensor_1", 10.0, _dispatcher())
        await asyncio.wait_for(sim.run(stop), timeout=0.5)
        assert sim.ticks == 0

    @pytest.mark.asyncio
    async def test_keeps_ticking_when_rejected(self) -> None:
        sim = SensorSimulator("sensor_1", 100.0, _dispatcher(SubmitResult.BUFFER_FULL))
        stop = asyncio.Event()
        task = asyncio.create_task(sim.run(stop))
        await asyncio.sleep(0.2)
        stop.set()
        await task
        assert sim.rejected > 5
        assert sim.rejected == sim.ticks
