"""Tests for event subscriptions."""

import asyncio
from contextlib import asynccontextmanager

import pytest

from upstream_devnet.events import Event, EventSubscription, EventType
from upstream_devnet.proxy_client import parse_sse


class FakeEventSource:
    """An event source fed by the test through ``publish``."""

    def __init__(self):
        self.opened = 0
        self.listeners = []

    def publish(self, event: Event) -> None:
        for queue in list(self.listeners):
            queue.put_nowait(event)

    def close(self) -> None:
        for queue in list(self.listeners):
            queue.put_nowait(None)

    @asynccontextmanager
    async def __call__(self):
        self.opened += 1
        queue = asyncio.Queue()
        self.listeners.append(queue)
        try:
            yield self._events(queue)
        finally:
            self.listeners.remove(queue)

    async def _events(self, queue):
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event


def updated(urn: str) -> Event:
    return Event(type=EventType.PROJECT_UPDATED.value, urn=urn)


class TestEventSubscription:
    """Test cases for EventSubscription."""

    @pytest.mark.asyncio
    async def test_filter_is_lazy(self):
        """Test that building a subscription does not attach a listener."""
        source = FakeEventSource()
        subscription = EventSubscription(source).filter(lambda ev: ev.type == "projectUpdated")
        await asyncio.sleep(0)

        assert subscription is not None
        assert source.opened == 0

    @pytest.mark.asyncio
    async def test_first_match(self):
        """Test that the first matching event resolves the match."""
        source = FakeEventSource()
        match = (
            EventSubscription(source)
            .filter(lambda ev: ev.type == EventType.PROJECT_UPDATED.value)
            .filter(lambda ev: ev.urn == "rad:git:foo")
            .first_match()
        )
        await match.attached()

        source.publish(Event(type=EventType.REQUEST_CREATED.value, urn="rad:git:foo"))
        source.publish(updated("rad:git:bar"))
        source.publish(updated("rad:git:foo"))
        source.publish(updated("rad:git:foo"))

        event = await asyncio.wait_for(match, timeout=2.0)
        assert event.type == "projectUpdated"
        assert event.urn == "rad:git:foo"
        assert source.opened == 1

    @pytest.mark.asyncio
    async def test_listener_detaches_after_match(self):
        """Test that the listener is released once a match is found."""
        source = FakeEventSource()
        match = EventSubscription(source).first_match()
        await match.attached()
        source.publish(updated("rad:git:foo"))
        await asyncio.wait_for(match, timeout=2.0)
        await asyncio.sleep(0.01)

        assert source.listeners == []

    @pytest.mark.asyncio
    async def test_events_before_attach_are_missed(self):
        """Test that events published before a listener attaches are not seen."""
        source = FakeEventSource()
        subscription = EventSubscription(source).filter(lambda ev: ev.urn == "rad:git:early")
        source.publish(updated("rad:git:early"))

        match = subscription.first_match()
        await match.attached()

        await asyncio.sleep(0.1)
        assert not match.done()
        match.cancel()

    @pytest.mark.asyncio
    async def test_pending_after_stream_ends(self):
        """Test that a match stays pending when the stream ends without a match."""
        source = FakeEventSource()
        match = EventSubscription(source).filter(lambda ev: ev.urn == "rad:git:never").first_match()
        await match.attached()
        source.publish(updated("rad:git:other"))
        source.close()

        await asyncio.sleep(0.2)
        assert not match.done()
        match.cancel()

    @pytest.mark.asyncio
    async def test_attached_raises_when_source_fails(self):
        """Test that attached() surfaces errors opening the stream."""

        @asynccontextmanager
        async def failing_source():
            raise ConnectionError("refused")
            yield  # pragma: no cover

        match = EventSubscription(failing_source).first_match()

        with pytest.raises(ConnectionError):
            await match.attached()
        match.cancel()

    @pytest.mark.asyncio
    async def test_independent_matches(self):
        """Test that each first_match attaches its own listener."""
        source = FakeEventSource()
        subscription = EventSubscription(source)
        first = subscription.filter(lambda ev: ev.urn == "a").first_match()
        second = subscription.filter(lambda ev: ev.urn == "b").first_match()
        await first.attached()
        await second.attached()

        source.publish(updated("b"))
        source.publish(updated("a"))

        assert (await asyncio.wait_for(first, 2.0)).urn == "a"
        assert (await asyncio.wait_for(second, 2.0)).urn == "b"
        assert source.opened == 2


class TestParseSse:
    """Test cases for server-sent events decoding."""

    @pytest.mark.asyncio
    async def test_parse_events(self):
        """Test decoding of data blocks, ignoring comments."""

        async def lines():
            for line in [
                ": connected",
                "",
                'data: {"type": "projectUpdated", "urn": "rad:git:foo"}',
                "",
                'data: {"type": "requestCreated",',
                'data:  "urn": "rad:git:bar", "peer": "hyb"}',
                "",
            ]:
                yield line

        events = [event async for event in parse_sse(lines())]

        assert [e.type for e in events] == ["projectUpdated", "requestCreated"]
        assert events[0].urn == "rad:git:foo"
        assert events[1].urn == "rad:git:bar"
        assert events[1].model_extra == {"peer": "hyb"}


class TestEventMatchTimeout:
    """Test cases for bounding a match with a timeout."""

    @pytest.mark.asyncio
    async def test_wait_for_timeout_releases_listener(self):
        """Test that timing out a match cancels it and detaches the listener."""
        source = FakeEventSource()
        match = EventSubscription(source).filter(lambda ev: False).first_match()
        await match.attached()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(match, timeout=0.1)
        await asyncio.sleep(0.01)

        assert match.done()
        assert source.listeners == []
