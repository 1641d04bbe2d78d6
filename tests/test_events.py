"""Unit tests for :mod:`aidev.orchestration.events`."""

from __future__ import annotations

import gc
import logging
from dataclasses import dataclass

import pytest

from aidev.core.types import ScanResult, ToolId
from aidev.orchestration.events import Event, EventBus, ToolRunCompleted


@dataclass(slots=True, frozen=True)
class SampleEvent(Event):
    message: str
    value: int = 0


@dataclass(slots=True, frozen=True)
class AnotherEvent(Event):
    data: str


class Subscriber:
    def __init__(self) -> None:
        self.received: list[SampleEvent] = []

    def on_sample(self, event: SampleEvent) -> None:
        self.received.append(event)


class TestSubscription:
    def test_publish_reaches_matching_handlers_only(self) -> None:
        bus: EventBus[Event] = EventBus()
        samples: list[SampleEvent] = []
        others: list[AnotherEvent] = []
        bus.subscribe(SampleEvent, samples.append)
        bus.subscribe(AnotherEvent, others.append)

        bus.publish(SampleEvent(message="hi", value=1))

        assert samples == [SampleEvent(message="hi", value=1)]
        assert others == []
        assert bus.handler_count() == 2

    def test_handlers_run_in_subscription_order(self) -> None:
        bus: EventBus[Event] = EventBus()
        order: list[str] = []
        bus.subscribe(SampleEvent, lambda event: order.append("first"))
        bus.subscribe(SampleEvent, lambda event: order.append("second"))

        bus.publish(SampleEvent(message="x"))

        assert order == ["first", "second"]

    def test_returned_unsubscribe(self) -> None:
        bus: EventBus[Event] = EventBus()
        received: list[SampleEvent] = []
        unsubscribe = bus.subscribe(SampleEvent, received.append)

        unsubscribe()
        unsubscribe()
        bus.publish(SampleEvent(message="x"))

        assert received == []
        assert bus.handler_count(SampleEvent) == 0

    def test_unsubscribe_by_handler(self) -> None:
        bus: EventBus[Event] = EventBus()
        subscriber = Subscriber()
        bus.subscribe(SampleEvent, subscriber.on_sample)

        bus.unsubscribe(SampleEvent, subscriber.on_sample)
        bus.unsubscribe(AnotherEvent, subscriber.on_sample)

        assert bus.handler_count(SampleEvent) == 0

    def test_clear(self) -> None:
        bus: EventBus[Event] = EventBus()
        bus.subscribe(SampleEvent, lambda event: None)
        bus.clear()
        assert bus.handler_count() == 0


class TestDelivery:
    def test_bound_methods_are_held_weakly(self) -> None:
        bus: EventBus[Event] = EventBus()
        subscriber = Subscriber()
        bus.subscribe(SampleEvent, subscriber.on_sample)
        bus.publish(SampleEvent(message="alive"))
        assert len(subscriber.received) == 1

        del subscriber
        gc.collect()
        bus.publish(SampleEvent(message="gone"))

        assert bus.handler_count(SampleEvent) == 0

    def test_failing_handler_does_not_stop_others(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.ERROR, logger="aidev.orchestration.events")
        bus: EventBus[Event] = EventBus()
        received: list[SampleEvent] = []

        def explode(event: SampleEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(SampleEvent, explode)
        bus.subscribe(SampleEvent, received.append)

        bus.publish(SampleEvent(message="x"))

        assert len(received) == 1
        assert any("explode" in record.getMessage() for record in caplog.records)

    def test_publish_without_handlers(self) -> None:
        EventBus().publish(SampleEvent(message="nobody"))

    def test_tool_run_completed_defaults(self) -> None:
        result = ScanResult.failed(ToolId.LINT, "boom")
        event = ToolRunCompleted(tool_id=ToolId.LINT, result=result)
        assert event.from_cache is False
