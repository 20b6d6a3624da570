"""Console dispatcher - prints events instead of publishing them.

Useful for dry runs, demos, and checking the generator without a broker.
Every message is "delivered" as soon as it is written.
"""

from __future__ import annotations

import asyncio
import sys
from typing import IO, Any

from sensor_producer.dispatch.base import Dispatcher, OutboundMessage

__all__ = ["ConsoleDispatcher"]


class ConsoleDispatcher(Dispatcher):
    """Writes events to the console (stdout by default).

    Parameters:
        fmt: Output format - ``"json"`` (the wire payload, one per line) or
             ``"text"`` (``[key] payload``).
        stream: Writable file-like object (defaults to ``sys.stdout``).
        topic: Label only; nothing is published.
        **kwargs: Forwarded to :class:`Dispatcher`.
    """

    def __init__(
        self,
        *,
        fmt: str = "json",
        stream: IO[str] | None = None,
        topic: str = "console",
        **kwargs: Any,
    ) -> None:
        super().__init__(topic=topic, **kwargs)
        self._fmt = fmt
        self._stream = stream or sys.stdout

    async def _connect(self) -> None:
        """No-op - stdout is always available."""

    async def _send(self, message: OutboundMessage) -> asyncio.Future[Any]:
        line = message.value.decode("utf-8")
        if self._fmt == "text":
            line = f"[{message.key.decode('utf-8')}] {line}"
        self._stream.write(line + "\n")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        future.set_result(None)
        return future

    async def _flush(self) -> None:
        self._stream.flush()

    async def _close(self) -> None:
        """No-op - we do not own stdout."""
