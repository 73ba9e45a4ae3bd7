"""
Tests for the event sinks.
"""

import logging

import pytest

from callflow.events import FanOutEventSink, InMemoryEventSink, LoggingEventSink, create_event_sink


class BrokenSink:
    async def publish(self, event_type, payload):
        raise ConnectionError("bus unavailable")


class TestInMemoryEventSink:
    """Tests for the recording sink."""

    @pytest.mark.asyncio
    async def test_records_and_filters(self, sink):
        await sink.publish("RunStarted", {"run_id": "r-1"})
        await sink.publish("CallEnded", {"call_id": "c-1"})

        assert sink.types() == ["RunStarted", "CallEnded"]
        assert [event.payload for event in sink.events("CallEnded")] == [{"call_id": "c-1"}]
        assert sink.events()[0].to_dict()["event_type"] == "RunStarted"

    @pytest.mark.asyncio
    async def test_keeps_latest_events(self):
        sink = InMemoryEventSink(max_events=2)
        for n in range(3):
            await sink.publish("Tick", {"n": n})

        assert [event.payload["n"] for event in sink.events()] == [1, 2]
        sink.clear()
        assert len(sink) == 0


class TestLoggingEventSink:
    """Tests for writing events to the log."""

    @pytest.mark.asyncio
    async def test_logs_event(self, caplog):
        with caplog.at_level(logging.INFO, logger="callflow.events"):
            await LoggingEventSink().publish("CallEnded", {"call_id": "c-1"})

        assert "Event CallEnded: {'call_id': 'c-1'}" in caplog.text


class TestFanOutEventSink:
    """Tests for publishing to several sinks."""

    @pytest.mark.asyncio
    async def test_broken_sink_does_not_stop_others(self, sink, caplog):
        fan_out = FanOutEventSink(BrokenSink(), sink)

        with caplog.at_level(logging.WARNING, logger="callflow.events"):
            await fan_out.publish("RunFailed", {"run_id": "r-1"})

        assert sink.types() == ["RunFailed"]
        assert "BrokenSink failed for RunFailed" in caplog.text


class TestCreateEventSink:
    """Tests for choosing the engine's sink from settings."""

    def test_recorder_only(self, sink):
        assert create_event_sink(sink) is sink

    @pytest.mark.asyncio
    async def test_with_logging(self, sink, caplog):
        combined = create_event_sink(sink, log_events=True)
        assert isinstance(combined, FanOutEventSink)

        with caplog.at_level(logging.INFO, logger="callflow.events"):
            await combined.publish("RunStarted", {"run_id": "r-2"})

        assert sink.types() == ["RunStarted"]
        assert "Event RunStarted" in caplog.text
