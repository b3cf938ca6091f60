"""Events consumed by the browser loop.

Background work never touches browser state directly. It posts one of the
events below on the ``EventBus`` and the loop hands it to the owning
component. ``Event`` is a closed union; every member carries a ``kind``
tag and the browser keeps one handler per kind.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, List, Optional, Union

from casedesk.models.case import CaseBundle, ListPage
from casedesk.models.export import ExportResult, ProgressEvent

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    DEBOUNCE_ELAPSED = "debounce_elapsed"
    DETAIL_LOADED = "detail_loaded"
    PAGE_LOADED = "page_loaded"
    STATUS_POSTED = "status_posted"
    EXPORT_PROGRESSED = "export_progressed"
    EXPORT_FINISHED = "export_finished"


class StatusLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class DebounceElapsed:
    """The debounce timer armed for ``case_id`` fired.

    ``sequence`` numbers each arming of the timer; only the latest counts.
    """

    case_id: str
    sequence: int = 0
    kind: ClassVar[EventKind] = EventKind.DEBOUNCE_ELAPSED


@dataclass(frozen=True)
class DetailLoaded:
    """A detail fetch finished. Exactly one of ``bundle``/``error`` is set."""

    case_id: str
    bundle: Optional[CaseBundle] = None
    error: Optional[str] = None
    unauthorized: bool = False
    kind: ClassVar[EventKind] = EventKind.DETAIL_LOADED


@dataclass(frozen=True)
class PageLoaded:
    """A list page fetch finished.

    ``generation`` identifies the filter the page was requested for; pages
    from an earlier generation are discarded.
    """

    generation: int
    offset: int
    page: Optional[ListPage] = None
    error: Optional[str] = None
    unauthorized: bool = False
    kind: ClassVar[EventKind] = EventKind.PAGE_LOADED


@dataclass(frozen=True)
class StatusPosted:
    message: str
    level: StatusLevel = StatusLevel.INFO
    kind: ClassVar[EventKind] = EventKind.STATUS_POSTED


@dataclass(frozen=True)
class ExportProgressed:
    progress: ProgressEvent
    kind: ClassVar[EventKind] = EventKind.EXPORT_PROGRESSED


@dataclass(frozen=True)
class ExportFinished:
    """An export run ended, with a result or a run-level error."""

    result: Optional[ExportResult] = None
    error: Optional[str] = None
    kind: ClassVar[EventKind] = EventKind.EXPORT_FINISHED


Event = Union[
    DebounceElapsed,
    DetailLoaded,
    PageLoaded,
    StatusPosted,
    ExportProgressed,
    ExportFinished,
]


class EventBus:
    """Unbounded FIFO of events from workers to the browser loop.

    Posting never blocks, so timers and worker tasks can always hand off
    their result.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue()

    def post(self, event: Event) -> None:
        logger.debug(f"Posting {event.kind.value} event")
        self._queue.put_nowait(event)

    async def get(self) -> Event:
        return await self._queue.get()

    def drain(self) -> List[Event]:
        """Remove and return every queued event without waiting."""
        events: List[Event] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def __len__(self) -> int:
        return self._queue.qsize()
