"""Lazy, filterable subscriptions to a peer's event stream.

A subscription does nothing until ``first_match()`` is called. Only then is a
listener attached to the peer and events start to flow, so events emitted
before that are never seen. Create the match and wait for ``attached()``
before triggering the side effect you expect an event for.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import AsyncContextManager, AsyncIterator, Callable, Generator, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from upstream_devnet.observability import get_logger

logger = get_logger("upstream_devnet.events")


class EventType(str, Enum):
    PROJECT_UPDATED = "projectUpdated"
    REQUEST_CREATED = "requestCreated"
    REQUEST_QUERIED = "requestQueried"
    REQUEST_CLONED = "requestCloned"
    REQUEST_TIMED_OUT = "requestTimedOut"
    WAITING_ROOM_TRANSITION = "waitingRoomTransition"


class Event(BaseModel):
    """An event emitted by a peer. Payload fields depend on ``type``."""

    model_config = ConfigDict(extra="allow")

    type: str
    urn: Optional[str] = None


Predicate = Callable[[Event], bool]
# Opening the source attaches a listener and yields the live events.
EventSource = Callable[[], AsyncContextManager[AsyncIterator[Event]]]


class EventSubscription:
    """A cursor over a peer's live events, narrowed by predicates."""

    def __init__(self, source: EventSource, predicates: Tuple[Predicate, ...] = ()) -> None:
        self._source = source
        self._predicates = predicates

    def filter(self, predicate: Predicate) -> EventSubscription:
        """Return a subscription that only yields events matching ``predicate``."""
        return EventSubscription(self._source, self._predicates + (predicate,))

    def matches(self, event: Event) -> bool:
        return all(predicate(event) for predicate in self._predicates)

    def first_match(self) -> EventMatch:
        """Start listening and return the pending first matching event.

        The match never resolves if the stream ends without a matching event.
        Use ``asyncio.wait_for`` to bound the wait.
        """
        return EventMatch(self._source, self.matches)


class EventMatch:
    """The first event of a subscription, awaitable."""

    def __init__(self, source: EventSource, matches: Predicate) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._attached = asyncio.Event()
        self._listener = asyncio.create_task(self._listen(source))
        self._listener.add_done_callback(self._on_listener_done)
        self._consumer = asyncio.create_task(self._consume(matches))

    async def _listen(self, source: EventSource) -> None:
        async with source() as events:
            self._attached.set()
            logger.debug("Event listener attached")
            try:
                async for event in events:
                    self._queue.put_nowait(event)
            except Exception as err:
                logger.warning("Event stream failed", error=str(err))
        logger.debug("Event stream ended")

    def _on_listener_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Event listener could not attach", error=str(task.exception()))

    async def _consume(self, matches: Predicate) -> Event:
        try:
            while True:
                event = await self._queue.get()
                logger.debug("Received event", type=event.type, urn=event.urn)
                if matches(event):
                    return event
        finally:
            self._listener.cancel()

    async def attached(self) -> None:
        """Wait until the listener is attached to the event stream.

        Raises the listener's error if the stream could not be opened.
        """
        attached = asyncio.ensure_future(self._attached.wait())
        try:
            await asyncio.wait({attached, self._listener}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            attached.cancel()
        if self._attached.is_set():
            return
        if self._listener.cancelled():
            raise asyncio.CancelledError()
        error = self._listener.exception()
        if error is not None:
            raise error
        raise RuntimeError("Event stream closed before the listener attached")

    def done(self) -> bool:
        return self._consumer.done()

    def cancel(self) -> None:
        self._consumer.cancel()
        self._listener.cancel()

    def __await__(self) -> Generator[object, None, Event]:
        return self._consumer.__await__()
