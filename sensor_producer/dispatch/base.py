"""Dispatcher abstraction with bounded-queue backpressure and delivery accounting.

Provides:
- ``Dispatcher``       - abstract base owning the outbound queue, the forwarder
                         and the two completion-drain tasks.  Concrete
                         dispatchers only implement the transport hooks.
- ``DispatcherConfig`` - queue / retry / flush / size knobs.
- ``SubmitResult``     - outcome of a non-blocking :meth:`Dispatcher.submit`.
- ``DeliveryStats``    - point-in-time snapshot of the delivery counters.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, Field

from sensor_producer.models import SensorEvent, SerializationError

__all__ = [
    "BrokerConnectionError",
    "DeliveryFailure",
    "DeliveryStats",
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherState",
    "MessageTooLargeError",
    "OutboundMessage",
    "SubmitResult",
]

logger = logging.getLogger("sensor_producer.dispatch")


class BrokerConnectionError(ConnectionError):
    """Raised by :meth:`Dispatcher.start` when the transport cannot connect."""


class MessageTooLargeError(ValueError):
    """Terminal delivery error for a payload above ``max_message_bytes``."""


# -----------------------------------------------------------------------
# Configuration and value types
# -----------------------------------------------------------------------


class DispatcherConfig(BaseModel):
    """Delivery knobs shared by every transport.

    Attributes:
        queue_size:
            Capacity of the outbound queue.  ``submit`` rejects with
            ``BUFFER_FULL`` once this many messages are waiting.
        retry_max:
            Retries for a retriable transport failure before the message
            is reported as a terminal delivery error.
        retry_backoff_ms:
            Fixed pause between retries.
        flush_messages:
            Flush the transport after this many forwarded messages.
        flush_frequency_ms:
            Flush the transport this long after the first message forwarded
            since the previous flush, if the count trigger has not fired.
        max_message_bytes:
            Largest serialised payload accepted for delivery.
        close_timeout_s:
            Upper bound on the drain performed by :meth:`Dispatcher.close`.
    """

    queue_size: int = Field(default=256, gt=0)
    retry_max: int = Field(default=5, ge=0)
    retry_backoff_ms: int = Field(default=100, ge=0)
    flush_messages: int = Field(default=100, gt=0)
    flush_frequency_ms: int = Field(default=100, gt=0)
    max_message_bytes: int = Field(default=1_000_000, gt=0)
    close_timeout_s: float = Field(default=10.0, gt=0)


class DispatcherState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"


class SubmitResult(str, Enum):
    """Outcome of :meth:`Dispatcher.submit`."""

    ACCEPTED = "accepted"
    BUFFER_FULL = "buffer_full"
    SERIALIZATION_ERROR = "serialization_error"
    CLOSED = "closed"

    @property
    def accepted(self) -> bool:
        return self is SubmitResult.ACCEPTED


class DeliveryStats(BaseModel):
    """Snapshot of the dispatcher counters.

    Attributes:
        success: Deliveries confirmed by the transport.
        errors: Terminal per-event delivery failures.
        dropped: Events rejected by ``submit`` because the queue was full.
        serialization_errors: Events that could not be encoded.
        accepted: Events accepted into the outbound queue.
    """

    model_config = {"frozen": True}

    success: int = 0
    errors: int = 0
    dropped: int = 0
    serialization_errors: int = 0
    accepted: int = 0


class OutboundMessage(NamedTuple):
    key: bytes
    value: bytes


class DeliveryFailure(NamedTuple):
    message: OutboundMessage
    error: BaseException


# -----------------------------------------------------------------------
# Dispatcher ABC
# -----------------------------------------------------------------------


class Dispatcher(ABC):
    """Non-blocking, ordered, accounted delivery path to a transport.

    Concrete dispatchers implement ``_connect``, ``_send``, ``_flush`` and
    ``_close``.  ``_send`` hands one message to the transport and returns a
    future that resolves once the transport confirms (or fails) delivery.

    All counters are plain integers mutated only from the event loop thread,
    so every increment is indivisible without any lock.  Messages leave the
    outbound queue through a single forwarder in FIFO order, which keeps the
    submission order of each partition key intact.
    """

    def __init__(self, *, topic: str, config: DispatcherConfig | None = None, **overrides: Any) -> None:
        if config is None:
            config = DispatcherConfig(**overrides)
        elif overrides:
            config = config.model_copy(update=overrides)
        self.topic = topic
        self.config = config
        self.state = DispatcherState.CREATED

        self._queue: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize=config.queue_size)
        self._acks: asyncio.Queue[Any] = asyncio.Queue()
        self._failures: asyncio.Queue[DeliveryFailure] = asyncio.Queue()
        self._in_flight: set[asyncio.Future[Any]] = set()
        self._tasks: list[asyncio.Task[None]] = []
        self._flush_task: asyncio.Task[None] | None = None
        self._flush_timer: asyncio.TimerHandle | None = None
        self._unflushed = 0

        self._success = 0
        self._errors = 0
        self._dropped = 0
        self._serialization_errors = 0
        self._accepted = 0

    # -- transport hooks --

    @abstractmethod
    async def _connect(self) -> None:
        """Open the transport.  Raise :class:`BrokerConnectionError` on failure."""

    @abstractmethod
    async def _send(self, message: OutboundMessage) -> asyncio.Future[Any]:
        """Hand a message to the transport and return its delivery future."""

    @abstractmethod
    async def _flush(self) -> None:
        """Push out anything the transport is still batching."""

    @abstractmethod
    async def _close(self) -> None:
        """Release the transport."""

    def _is_retriable(self, exc: BaseException) -> bool:
        """Whether a failure raised by ``_send`` is worth retrying."""
        return False

    # -- public interface --

    async def start(self) -> None:
        """Connect the transport and launch the background tasks."""
        if self.state is not DispatcherState.CREATED:
            raise RuntimeError(f"cannot start a dispatcher in state {self.state.value}")
        await self._connect()
        self.state = DispatcherState.RUNNING
        name = type(self).__name__
        self._tasks = [
            asyncio.create_task(self._forward_loop(), name=f"{name}-forward"),
            asyncio.create_task(self._drain_acks(), name=f"{name}-acks"),
            asyncio.create_task(self._drain_failures(), name=f"{name}-errors"),
        ]
        logger.info("%s running - topic '%s', queue capacity %d", name, self.topic, self.config.queue_size)

    def submit(self, event: SensorEvent) -> SubmitResult:
        """Queue an event for delivery without ever suspending the caller."""
        if self.state in (DispatcherState.CLOSING, DispatcherState.CLOSED):
            return SubmitResult.CLOSED

        try:
            payload = event.encode()
        except SerializationError as exc:
            self._serialization_errors += 1
            logger.debug("Dropping unserialisable event %s: %s", event.event_id, exc)
            return SubmitResult.SERIALIZATION_ERROR

        try:
            self._queue.put_nowait(OutboundMessage(key=event.key, value=payload))
        except asyncio.QueueFull:
            self._dropped += 1
            return SubmitResult.BUFFER_FULL

        self._accepted += 1
        return SubmitResult.ACCEPTED

    def stats(self) -> DeliveryStats:
        return DeliveryStats(
            success=self._success,
            errors=self._errors,
            dropped=self._dropped,
            serialization_errors=self._serialization_errors,
            accepted=self._accepted,
        )

    @property
    def pending(self) -> int:
        """Messages accepted but not yet resolved by the transport."""
        return self._queue.qsize() + len(self._in_flight)

    async def close(self) -> None:
        """Flush queued and in-flight messages, then release the transport.

        Callers must stop submitting first.  The drain is bounded by
        ``close_timeout_s``; anything still pending afterwards is abandoned.
        """
        if self.state in (DispatcherState.CLOSING, DispatcherState.CLOSED):
            return

        was_running = self.state is DispatcherState.RUNNING
        self.state = DispatcherState.CLOSING
        if not was_running:
            if self._queue.qsize():
                logger.warning("Closing unstarted dispatcher - discarding %d queued messages", self._queue.qsize())
            self.state = DispatcherState.CLOSED
            return

        logger.info("Closing %s - %d messages pending", type(self).__name__, self.pending)
        try:
            await asyncio.wait_for(self._drain(), timeout=self.config.close_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(
                "Flush timed out after %.1fs - abandoning %d pending messages",
                self.config.close_timeout_s,
                self.pending,
            )
        finally:
            if self._flush_timer is not None:
                self._flush_timer.cancel()
            if self._flush_task is not None:
                self._tasks.append(self._flush_task)
            for task in self._tasks:
                task.cancel()
            for task in self._tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            await self._close()
            self.state = DispatcherState.CLOSED
            stats = self.stats()
            logger.info("%s closed - %d delivered, %d failed", type(self).__name__, stats.success, stats.errors)

    # -- internal --

    async def _drain(self) -> None:
        await self._queue.join()
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        if self._flush_task is not None:
            await self._flush_task
        await self._flush_quietly()
        if self._in_flight:
            await asyncio.wait(set(self._in_flight))
        await self._acks.join()
        await self._failures.join()

    async def _forward_loop(self) -> None:
        """Move messages from the outbound queue to the transport, in order."""
        loop = asyncio.get_running_loop()
        interval = self.config.flush_frequency_ms / 1000
        while True:
            message = await self._queue.get()
            try:
                await self._forward(message)
            finally:
                self._queue.task_done()

            self._unflushed += 1
            if self._unflushed >= self.config.flush_messages:
                self._request_flush()
            elif self._flush_timer is None:
                self._flush_timer = loop.call_later(interval, self._request_flush)

    def _request_flush(self) -> None:
        """Start a background flush, or re-arm the timer if one is running."""
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        if self._flush_task is not None and not self._flush_task.done():
            # Keep the count; the re-armed timer flushes it.
            self._flush_timer = asyncio.get_running_loop().call_later(
                self.config.flush_frequency_ms / 1000, self._request_flush
            )
            return
        self._unflushed = 0
        self._flush_task = asyncio.create_task(self._flush_quietly())

    async def _forward(self, message: OutboundMessage) -> None:
        if len(message.value) > self.config.max_message_bytes:
            error = MessageTooLargeError(
                f"message of {len(message.value)} bytes exceeds limit of {self.config.max_message_bytes}"
            )
            self._failures.put_nowait(DeliveryFailure(message, error))
            return

        backoff = self.config.retry_backoff_ms / 1000
        for attempt in range(self.config.retry_max + 1):
            try:
                future = await self._send(message)
            except Exception as exc:
                if attempt < self.config.retry_max and self._is_retriable(exc):
                    logger.warning(
                        "Send failed (attempt %d/%d, key: %s): %s - retrying in %dms",
                        attempt + 1,
                        self.config.retry_max + 1,
                        message.key.decode(errors="replace"),
                        exc,
                        self.config.retry_backoff_ms,
                    )
                    await asyncio.sleep(backoff)
                    continue
                self._failures.put_nowait(DeliveryFailure(message, exc))
                return

            self._in_flight.add(future)
            future.add_done_callback(functools.partial(self._route_completion, message))
            return

    def _route_completion(self, message: OutboundMessage, future: asyncio.Future[Any]) -> None:
        self._in_flight.discard(future)
        if future.cancelled():
            self._failures.put_nowait(DeliveryFailure(message, asyncio.CancelledError()))
        elif future.exception() is not None:
            self._failures.put_nowait(DeliveryFailure(message, future.exception()))
        else:
            self._acks.put_nowait(future.result())

    async def _flush_quietly(self) -> None:
        try:
            await self._flush()
        except Exception as exc:
            # Undelivered messages surface through their own futures.
            logger.warning("%s flush failed: %s", type(self).__name__, exc)

    async def _drain_acks(self) -> None:
        while True:
            await self._acks.get()
            self._success += 1
            self._acks.task_done()

    async def _drain_failures(self) -> None:
        while True:
            failure = await self._failures.get()
            self._errors += 1
            logger.error(
                "Failed to deliver message: %s (key: %s)",
                failure.error,
                failure.message.key.decode(errors="replace"),
            )
            self._failures.task_done()
