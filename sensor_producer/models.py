"""Event model for the sensor producer.

Defines the SensorEvent, the immutable reading every simulator emits and the
dispatcher serialises onto the wire.
"""

from __future__ import annotations

import math
import time
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel

__all__ = ["SensorEvent", "SerializationError", "format_timestamp"]


class SerializationError(ValueError):
    """Raised when an event cannot be encoded to its wire format."""


def format_timestamp(ns: int) -> str:
    """Format epoch nanoseconds as RFC3339 UTC with nanosecond precision.

    Trailing zeros of the fractional part are trimmed and the fraction is
    omitted entirely on a whole second, e.g. ``2024-01-02T03:04:05.1234Z``.
    """
    seconds, nanos = divmod(ns, 1_000_000_000)
    text = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    if nanos:
        text += "." + f"{nanos:09d}".rstrip("0")
    return text + "Z"


class SensorEvent(BaseModel):
    """A single sensor reading.

    Attributes:
        sensor_id: Emitting sensor, e.g. ``"sensor_1"``.  Also the partition key.
        event_id: Globally unique identifier (UUID4 string).
        timestamp: RFC3339 UTC wall-clock time with nanosecond precision.
        value: The reading.
    """

    model_config = {"frozen": True}

    sensor_id: str
    event_id: str
    timestamp: str
    value: float

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, sensor_id: str, value: float) -> SensorEvent:
        """Build an event stamped with a fresh id and the current time."""
        return cls(
            sensor_id=sensor_id,
            event_id=str(uuid.uuid4()),
            timestamp=format_timestamp(time.time_ns()),
            value=value,
        )

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def to_json(self) -> str:
        """Return the compact JSON wire form.

        Raises:
            SerializationError: if ``value`` is NaN or infinite.
        """
        if not math.isfinite(self.value):
            raise SerializationError(f"non-finite value {self.value!r} for sensor {self.sensor_id!r}")
        return self.model_dump_json()

    def encode(self) -> bytes:
        """Return the UTF-8 encoded wire form."""
        return self.to_json().encode("utf-8")

    @property
    def key(self) -> bytes:
        """Partition key used for broker routing."""
        return self.sensor_id.encode("utf-8")
