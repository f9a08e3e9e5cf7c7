"""Tests for event bus module."""

import pytest

from nimbus.common.events import Event, EventBus


@pytest.fixture
def event_bus() -> EventBus:
    """Create a fresh event bus for each test."""
    return EventBus()


class TestEvent:
    """Tests for Event class."""

    def test_event_creation(self):
        """Test creating an event."""
        event = Event(
            topic="test.topic",
            data={"key": "value"},
            source="test",
        )

        assert event.topic == "test.topic"
        assert event.data == {"key": "value"}
        assert event.source == "test"
        assert event.event_id  # Should be auto-generated
        assert event.timestamp > 0

    def test_event_ids_are_unique(self):
        """Test that each event gets its own id."""
        first = Event(topic="t", data={}, source="test")
        second = Event(topic="t", data={}, source="test")
        assert first.event_id != second.event_id


class TestEventBus:
    """Tests for EventBus class."""

    @pytest.mark.asyncio
    async def test_subscribe_and_publish(self, event_bus: EventBus):
        """Test basic subscribe and publish."""
        received_events = []

        async def handler(event: Event):
            received_events.append(event)

        event_bus.subscribe("test.topic", handler)

        event = Event(topic="test.topic", data={"test": True}, source="test")
        await event_bus.publish(event)

        assert len(received_events) == 1
        assert received_events[0].topic == "test.topic"
        assert received_events[0].data == {"test": True}

    @pytest.mark.asyncio
    async def test_topics_are_exact(self, event_bus: EventBus):
        """Test that handlers only see their own topic."""
        received_events = []

        async def handler(event: Event):
            received_events.append(event)

        event_bus.subscribe("pipeline.state", handler)

        await event_bus.publish(Event(topic="pipeline.state", data={}, source="test"))
        await event_bus.publish(Event(topic="pipeline.other", data={}, source="test"))

        assert [e.topic for e in received_events] == ["pipeline.state"]

    @pytest.mark.asyncio
    async def test_decorator_subscribe(self, event_bus: EventBus):
        """Test subscribing with the decorator form."""
        received_events = []

        @event_bus.subscribe("test.topic")
        async def handler(event: Event):
            received_events.append(event)

        await event_bus.publish(Event(topic="test.topic", data={}, source="test"))

        assert len(received_events) == 1
        assert event_bus.subscriber_count("test.topic") == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, event_bus: EventBus):
        """Test unsubscribing from events."""
        received_events = []

        async def handler(event: Event):
            received_events.append(event)

        unsubscribe = event_bus.subscribe("test.topic", handler)

        await event_bus.publish(Event(topic="test.topic", data={}, source="test"))
        assert len(received_events) == 1

        unsubscribe()
        unsubscribe()  # Second call is a no-op

        await event_bus.publish(Event(topic="test.topic", data={}, source="test"))
        assert len(received_events) == 1
        assert event_bus.subscriber_count("test.topic") == 0

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, event_bus: EventBus):
        """Test that one failing handler does not affect the others."""
        received_events = []

        async def broken(event: Event):
            raise RuntimeError("handler exploded")

        async def handler(event: Event):
            received_events.append(event)

        event_bus.subscribe("test.topic", broken)
        event_bus.subscribe("test.topic", handler)

        await event_bus.publish(Event(topic="test.topic", data={}, source="test"))

        assert len(received_events) == 1

    @pytest.mark.asyncio
    async def test_event_history(self, event_bus: EventBus):
        """Test event history tracking."""
        for i in range(5):
            await event_bus.publish(Event(topic="test.topic", data={"i": i}, source="test"))

        history = event_bus.get_history()
        assert len(history) == 5
        assert [e.data["i"] for e in history] == [0, 1, 2, 3, 4]

        history = event_bus.get_history(limit=3)
        assert [e.data["i"] for e in history] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_history_filter_by_topic(self, event_bus: EventBus):
        """Test filtering history by topic."""
        await event_bus.publish(Event(topic="topic.a", data={}, source="test"))
        await event_bus.publish(Event(topic="topic.b", data={}, source="test"))
        await event_bus.publish(Event(topic="topic.a", data={}, source="test"))

        assert len(event_bus.get_history(topic="topic.a")) == 2
        assert len(event_bus.get_history(topic="topic.b")) == 1

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        """Test that history drops the oldest events past its limit."""
        event_bus = EventBus(history_limit=3)
        for i in range(5):
            await event_bus.publish(Event(topic="t", data={"i": i}, source="test"))

        assert [e.data["i"] for e in event_bus.get_history()] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_clear_history(self, event_bus: EventBus):
        """Test clearing event history."""
        await event_bus.publish(Event(topic="test", data={}, source="test"))
        assert len(event_bus.get_history()) == 1

        event_bus.clear_history()
        assert len(event_bus.get_history()) == 0
