import pytest
from cti.infrastructure.event_bus import EventBus
from cti.domain.events import Event, InfoMessage, StepStarted

class MockEvent(Event):
    message: str

def test_event_bus_subscribe_publish():
    bus = EventBus()
    received_events = []

    def callback(event: MockEvent):
        received_events.append(event)

    bus.subscribe(MockEvent, callback)

    event = MockEvent(message="hello")
    bus.publish(event)

    assert len(received_events) == 1
    assert received_events[0].message == "hello"

def test_event_bus_multiple_subscribers():
    bus = EventBus()
    results = {"a": False, "b": False}

    bus.subscribe(MockEvent, lambda e: results.update({"a": True}))
    bus.subscribe(MockEvent, lambda e: results.update({"b": True}))

    bus.publish(MockEvent(message="test"))

    assert results["a"] is True
    assert results["b"] is True

def test_event_bus_decorator_subscribe():
    bus = EventBus()
    received = []

    @bus.subscribe(MockEvent)
    def on_event(event: MockEvent):
        received.append(event)

    bus.publish(MockEvent(message="decorator"))
    assert len(received) == 1
    assert received[0].message == "decorator"

def test_event_bus_dispatches_by_exact_type():
    bus = EventBus()
    steps = []
    bus.subscribe(StepStarted, steps.append)

    bus.publish(InfoMessage(message="not a step"))
    bus.publish(StepStarted(message="scanning"))

    assert [e.message for e in steps] == ["scanning"]

def test_event_bus_publish_without_subscribers():
    EventBus().publish(MockEvent(message="nobody listens"))

def test_event_bus_failing_subscriber_does_not_stop_others(caplog):
    bus = EventBus()
    received = []

    def broken(event):
        raise ValueError("render failed")

    bus.subscribe(MockEvent, broken)
    bus.subscribe(MockEvent, received.append)

    with caplog.at_level("ERROR", logger="cti.infrastructure.event_bus"):
        bus.publish(MockEvent(message="still delivered"))

    assert [e.message for e in received] == ["still delivered"]
    assert "render failed" in caplog.text
