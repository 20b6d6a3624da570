"""Shared fixtures."""

from __future__ import annotations

import pytest

_PRODUCER_ENV = (
    "KAFKA_BROKERS",
    "KAFKA_TOPIC",
    "SENSOR_COUNT",
    "EVENTS_PER_SEC",
    "RUN_DURATION_SEC",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_producer_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the host environment out of config resolution."""
    for key in _PRODUCER_ENV:
        monkeypatch.delenv(key, raising=False)
