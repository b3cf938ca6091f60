"""Progress reporting and cancellation for export runs."""

import asyncio
import logging
from typing import AsyncIterator, Optional

from casedesk.models.export import ProgressEvent

logger = logging.getLogger(__name__)

_CLOSED = object()


class ProgressChannel:
    """Bounded, never-blocking stream of progress events.

    ``publish`` never waits: when the buffer is full the oldest queued event
    is dropped to make room, so a slow or absent consumer can never stall an
    export. Consumers therefore see a coalesced stream, always ending with
    the latest state. ``close`` ends iteration after the queued events.

    Usage:
        channel = ProgressChannel()
        task = asyncio.create_task(exporter.export_cases(ids, progress=channel))
        async for event in channel:
            print(event.completed_tasks, event.total_tasks)
    """

    def __init__(self, maxsize: int = 64):
        self.maxsize = max(1, maxsize)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._closed = False
        self.published = 0
        self.dropped = 0
        self.latest: Optional[ProgressEvent] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self.published += 1
        self.latest = event
        self._put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._put(_CLOSED)

    async def get(self) -> Optional[ProgressEvent]:
        """Next event, or None once the channel is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any later reader
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event

    def _put(self, item: object) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1:
                logger.warning("Progress consumer is falling behind, coalescing events")
            self._queue.put_nowait(item)


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a run."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "") -> None:
        if not self._event.is_set():
            logger.info(f"Cancellation requested{': ' + reason if reason else ''}")
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
