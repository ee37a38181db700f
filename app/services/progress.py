"""
Progress sinks for signing runs.

A sink is the one-way channel the batch pipeline writes to. The pipeline does
not know the transport; the HTTP layer streams events from a queue sink, tests
record them in a list.
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, List, Protocol, Union

from app.models import CompletionEvent, ProgressEvent

logger = logging.getLogger(__name__)

SinkEvent = Union[ProgressEvent, CompletionEvent]


class ProgressSink(Protocol):
    """
    Interface for reporting run progress.

    Implementations must not raise into the pipeline: a broken consumer
    never aborts a signing run.
    """

    async def emit(self, event: ProgressEvent) -> None:
        ...

    async def complete(self, event: CompletionEvent) -> None:
        ...


class NullProgressSink:
    """No-op sink, for runs nobody observes."""

    async def emit(self, event: ProgressEvent) -> None:
        return

    async def complete(self, event: CompletionEvent) -> None:
        return


class RecordingProgressSink:
    """Keeps every event in order."""

    def __init__(self) -> None:
        self.events: List[SinkEvent] = []

    async def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)

    async def complete(self, event: CompletionEvent) -> None:
        self.events.append(event)

    @property
    def progress_events(self) -> List[ProgressEvent]:
        return [e for e in self.events if isinstance(e, ProgressEvent)]

    @property
    def completion_events(self) -> List[CompletionEvent]:
        return [e for e in self.events if isinstance(e, CompletionEvent)]


class MemoryQueueProgressSink:
    """
    In-memory async sink suitable for SSE streaming.

    Single consumer, ordered, terminates after the completion event.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[SinkEvent | None] = asyncio.Queue()
        self._closed = False

    async def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.warning(f"Progress event after completion dropped: {event.message_key}")
            return
        await self._queue.put(event)

    async def complete(self, event: CompletionEvent) -> None:
        if self._closed:
            return
        await self._queue.put(event)
        await self.close()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(None)

    async def stream(self) -> AsyncIterator[SinkEvent]:
        """Async generator yielding emitted events in order."""
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event
