"""Tests for KafkaDispatcher - mocked aiokafka producer."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiokafka.errors import KafkaConnectionError, KafkaError, MessageSizeTooLargeError

from sensor_producer.dispatch.base import BrokerConnectionError, DispatcherState, SubmitResult
from sensor_producer.dispatch.kafka import KafkaDispatcher
from sensor_producer.models import SensorEvent

# -----------------------------------------------------------------------
# Mock setup
# -----------------------------------------------------------------------


def _resolved(*_args: Any, **_kwargs: Any) -> asyncio.Future[Any]:
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
    future.set_result("record-metadata")
    return future


def _make_mock_producer() -> tuple[MagicMock, AsyncMock]:
    """Create a mock AIOKafkaProducer class and instance."""
    mock_producer_class = MagicMock()
    mock_producer_instance = AsyncMock()
    mock_producer_instance.start = AsyncMock()
    mock_producer_instance.send = AsyncMock(side_effect=_resolved)
    mock_producer_instance.flush = AsyncMock()
    mock_producer_instance.stop = AsyncMock()
    mock_producer_class.return_value = mock_producer_instance
    return mock_producer_class, mock_producer_instance


# -----------------------------------------------------------------------
# Tests
# -----------------------------------------------------------------------


class TestKafkaDispatcher:
    """KafkaDispatcher with a mocked AIOKafkaProducer."""

    @pytest.mark.asyncio
    async def test_producer_configuration(self) -> None:
        mock_cls, _mock_inst = _make_mock_producer()
        with patch("sensor_producer.dispatch.kafka.AIOKafkaProducer", mock_cls):
            d = KafkaDispatcher(bootstrap_servers="broker1:9092, broker2:9092", topic="sensor_metrics")
            await d.start()
            await d.close()

        kwargs = mock_cls.call_args[1]
        assert kwargs["bootstrap_servers"] == ["broker1:9092", "broker2:9092"]
        assert kwargs["acks"] == "all"
        assert kwargs["enable_idempotence"] is True
        assert kwargs["linger_ms"] == 100
        assert kwargs["max_request_size"] == 1_000_000
        assert kwargs["retry_backoff_ms"] == 100
        assert kwargs["compression_type"] is None

    @pytest.mark.asyncio
    async def test_send_keyed_by_sensor_id(self) -> None:
        mock_cls, mock_inst = _make_mock_producer()
        with patch("sensor_producer.dispatch.kafka.AIOKafkaProducer", mock_cls):
            d = KafkaDispatcher(topic="sensor_metrics")
            await d.start()
            event = SensorEvent.create("sensor_3", 55.5)
            assert d.submit(event) is SubmitResult.ACCEPTED
            await d.close()

        args, kwargs = mock_inst.send.call_args
        assert args[0] == "sensor_metrics"
        assert kwargs["key"] == b"sensor_3"
        assert kwargs["value"] == event.encode()
        assert d.stats().success == 1

    @pytest.mark.asyncio
    async def test_close_flushes_and_stops(self) -> None:
        mock_cls, mock_inst = _make_mock_producer()
        with patch("sensor_producer.dispatch.kafka.AIOKafkaProducer", mock_cls):
            d = KafkaDispatcher()
            await d.start()
            d.submit(SensorEvent.create("sensor_1", 1.0))
            await d.close()

        mock_inst.flush.assert_awaited()
        mock_inst.stop.assert_awaited_once()
        assert d.state is DispatcherState.CLOSED

    @pytest.mark.asyncio
    async def test_connection_failure_raises(self) -> None:
        mock_cls, mock_inst = _make_mock_producer()
        mock_inst.start.side_effect = KafkaConnectionError("Unable to bootstrap from localhost:9092")
        with patch("sensor_producer.dispatch.kafka.AIOKafkaProducer", mock_cls):
            d = KafkaDispatcher()
            with pytest.raises(BrokerConnectionError, match="cannot connect"):
                await d.start()

        mock_inst.stop.assert_awaited_once()
        assert d.state is DispatcherState.CREATED

    @pytest.mark.asyncio
    async def test_retriable_kafka_error_retried(self) -> None:
        mock_cls, mock_inst = _make_mock_producer()
        calls: list[int] = []

        def _flaky(*args: Any, **kwargs: Any) -> asyncio.Future[Any]:
            calls.append(1)
            if len(calls) == 1:
                raise KafkaConnectionError("connection reset")
            return _resolved()

        mock_inst.send.side_effect = _flaky
        with patch("sensor_producer.dispatch.kafka.AIOKafkaProducer", mock_cls):
            d = KafkaDispatcher(retry_backoff_ms=0)
            await d.start()
            d.submit(SensorEvent.create("sensor_1", 1.0))
            await d.close()

        assert len(calls) == 2
        assert d.stats().success == 1
        assert d.stats().errors == 0

    @pytest.mark.asyncio
    async def test_message_too_large_from_broker_counts_error(self) -> None:
        mock_cls, mock_inst = _make_mock_producer()
        mock_inst.send.side_effect = MessageSizeTooLargeError()
        with patch("sensor_producer.dispatch.kafka.AIOKafkaProducer", mock_cls):
            d = KafkaDispatcher()
            await d.start()
            d.submit(SensorEvent.create("sensor_1", 1.0))
            await d.close()

        assert mock_inst.send.await_count == 1
        assert d.stats().errors == 1
        assert d.stats().success == 0

    @pytest.mark.asyncio
    async def test_failed_delivery_future_counts_error(self) -> None:
        mock_cls, mock_inst = _make_mock_producer()

        def _failing(*args: Any, **kwargs: Any) -> asyncio.Future[Any]:
            future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
            future.set_exception(KafkaError("delivery timed out"))
            return future

        mock_inst.send.side_effect = _failing
        with patch("sensor_producer.dispatch.kafka.AIOKafkaProducer", mock_cls):
            d = KafkaDispatcher()
            await d.start()
            d.submit(SensorEvent.create("sensor_1", 1.0))
            await d.close()

        assert d.stats().errors == 1

    def test_is_retriable(self) -> None:
        d = KafkaDispatcher()
        assert d._is_retriable(KafkaConnectionError())
        assert not d._is_retriable(MessageSizeTooLargeError())
        assert not d._is_retriable(RuntimeError())

    def test_security_config(self) -> None:
        d = KafkaDispatcher(
            security_protocol="SASL_SSL",
            sasl_mechanism="PLAIN",
            sasl_username="user",
            sasl_password="pass",
            extra_producer_config={"request_timeout_ms": 5000},
        )
        cfg = d._producer_config
        assert cfg["security_protocol"] == "SASL_SSL"
        assert cfg["sasl_mechanism"] == "PLAIN"
        assert cfg["sasl_plain_username"] == "user"
        assert cfg["sasl_plain_password"] == "pass"
        assert cfg["request_timeout_ms"] == 5000

    @pytest.mark.asyncio
    async def test_send_without_connect_raises(self) -> None:
        d = KafkaDispatcher()
        with pytest.raises(RuntimeError, match="not connected"):
            await d._send(MagicMock())

    @pytest.mark.parametrize(
        "extra",
        [
            {"acks": 1},
            {"enable_idempotence": False},
            {"max_request_size": 50_000_000},
            {"request_timeout_ms": 5000, "linger_ms": 0},
        ],
    )
    def test_extra_config_cannot_weaken_delivery_settings(self, extra: dict[str, Any]) -> None:
        with pytest.raises(ValueError, match="may not override"):
            KafkaDispatcher(extra_producer_config=extra)

    def test_extra_config_keeps_required_settings(self) -> None:
        d = KafkaDispatcher(max_message_bytes=2048, extra_producer_config={"request_timeout_ms": 5000})
        cfg = d._producer_config
        assert cfg["request_timeout_ms"] == 5000
        assert cfg["acks"] == "all"
        assert cfg["enable_idempotence"] is True
        assert cfg["max_request_size"] == 2048
