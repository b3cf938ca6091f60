"""Incrementally paginated case list.

The loader keeps a gap-free prefix of the server's ordered results. Pages
are fetched one at a time and only when the viewport gets within one
screen of the end of what is loaded. A new filter (or a refresh) starts
over from offset 0; sorting only re-orders what is already loaded.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional, Set

from casedesk.core.events import EventBus, PageLoaded, StatusLevel, StatusPosted
from casedesk.exceptions import CaseServiceError, UnauthorizedError
from casedesk.models.case import EPOCH, Case, CaseFilter
from casedesk.models.interfaces import CaseService

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class SortField(str, Enum):
    LAST_MODIFIED = "last_modified"
    CREATED = "created"
    SEVERITY = "severity"
    CASE_NUMBER = "case_number"


def _sort_key(field: SortField) -> Callable[[Case], object]:
    if field == SortField.LAST_MODIFIED:
        return lambda case: case.last_modified or EPOCH
    if field == SortField.CREATED:
        return lambda case: case.created_date or EPOCH
    if field == SortField.SEVERITY:
        return lambda case: case.severity
    return lambda case: case.case_number


class PaginatedListLoader:
    """Owns the loaded list rows and decides when to fetch the next page.

    Selection is tracked by case number, so appending a page or re-sorting
    never moves the user off the row they were on.
    """

    def __init__(
        self,
        service: CaseService,
        bus: EventBus,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: Optional[float] = 30.0,
        on_reset: Optional[Callable[[], None]] = None,
    ):
        """Initialize loader.

        Args:
            service: CaseService to list from
            bus: Event bus page results are posted on
            page_size: Rows requested per page
            timeout: Deadline of one page fetch (seconds, None for none)
            on_reset: Called whenever the list starts over (clears the
                detail cache)
        """
        self.service = service
        self.bus = bus
        self.page_size = max(1, page_size)
        self.timeout = timeout
        self.on_reset = on_reset

        self._filter: Optional[CaseFilter] = None
        self._rows: List[Case] = []
        self._ids: Set[str] = set()
        self._next_offset = 0
        self._total = 0
        self._generation = 0
        self._loading: Optional[asyncio.Task] = None
        self._sort_field: Optional[SortField] = None
        self._sort_reverse = False
        self._view: Optional[List[Case]] = None
        self._selected_id: Optional[str] = None

    @property
    def case_filter(self) -> Optional[CaseFilter]:
        return self._filter

    @property
    def items(self) -> List[Case]:
        """Loaded rows in display order."""
        if self._sort_field is None:
            return list(self._rows)
        if self._view is None:
            self._view = sorted(
                self._rows, key=_sort_key(self._sort_field), reverse=self._sort_reverse
            )
        return list(self._view)

    @property
    def server_items(self) -> List[Case]:
        """Loaded rows in server order."""
        return list(self._rows)

    @property
    def total_count(self) -> int:
        return self._total

    @property
    def next_offset(self) -> int:
        return self._next_offset

    @property
    def has_more(self) -> bool:
        return self._next_offset < self._total

    @property
    def is_loading(self) -> bool:
        return self._loading is not None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def sort_field(self) -> Optional[SortField]:
        return self._sort_field

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def selected_index(self) -> Optional[int]:
        """Position of the selected row in display order."""
        if self._selected_id is None:
            return None
        for index, case in enumerate(self.items):
            if case.case_number == self._selected_id:
                return index
        return None

    def load_first_page(self, case_filter: Optional[CaseFilter] = None) -> None:
        """Discard everything loaded and fetch offset 0 for ``case_filter``."""
        self._restart(case_filter)
        self._selected_id = None

    def refresh(self) -> None:
        """Start over with the current filter, keeping the selected case number."""
        self._restart(self._filter)

    def _restart(self, case_filter: Optional[CaseFilter]) -> None:
        if self._loading is not None:
            self._loading.cancel()
            self._loading = None

        self._generation += 1
        self._filter = case_filter
        self._rows = []
        self._ids = set()
        self._view = None
        self._next_offset = 0
        self._total = 0
        if self.on_reset is not None:
            self.on_reset()

        logger.debug(f"Loading first page (generation {self._generation})")
        self._start_fetch(0)

    def maybe_load_more(self, scroll_position: int, viewport_height: int) -> bool:
        """Fetch the next page if the viewport is near the end.

        Args:
            scroll_position: Index of the first visible row
            viewport_height: Number of visible rows

        Returns:
            True if a page fetch was started
        """
        if self._loading is not None or not self.has_more:
            return False

        rows_below = len(self._rows) - (scroll_position + viewport_height)
        if rows_below > viewport_height:
            return False

        self._start_fetch(self._next_offset)
        return True

    def on_page_loaded(self, event: PageLoaded) -> None:
        """Append a fetched page, or report why it failed."""
        if event.generation != self._generation:
            logger.debug(
                f"Discarding page at offset {event.offset} from generation {event.generation}"
            )
            return

        self._loading = None

        if event.page is None:
            message = f"Failed to load cases: {event.error}"
            if event.unauthorized:
                message = "Not authorized to list cases, re-authenticate and retry"
            self.bus.post(StatusPosted(message, StatusLevel.ERROR))
            return

        page = event.page
        for case in page.items:
            if case.case_number in self._ids:
                continue
            self._ids.add(case.case_number)
            self._rows.append(case)
        self._view = None

        self._next_offset = event.offset + len(page.items)
        # An empty page ends paging even if the reported total says otherwise
        self._total = page.total_count if page.items else self._next_offset
        logger.debug(f"Loaded {len(self._rows)} of {self._total} cases")

    def set_sort(self, field: Optional[SortField], reverse: bool = False) -> None:
        """Re-order loaded rows locally; None restores server order."""
        self._sort_field = SortField(field) if field is not None else None
        self._sort_reverse = reverse
        self._view = None

    def select(self, case_id: Optional[str]) -> Optional[int]:
        """Select a row by case number; returns its display index."""
        self._selected_id = case_id
        return self.selected_index

    def select_index(self, index: int) -> Optional[str]:
        """Select the row at ``index`` in display order, clamped to the list."""
        rows = self.items
        if not rows:
            self._selected_id = None
            return None
        index = min(max(index, 0), len(rows) - 1)
        self._selected_id = rows[index].case_number
        return self._selected_id

    async def close(self) -> None:
        task, self._loading = self._loading, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def _start_fetch(self, offset: int) -> None:
        self._loading = asyncio.create_task(self._fetch(self._generation, offset))

    async def _fetch(self, generation: int, offset: int) -> None:
        try:
            page = await asyncio.wait_for(
                self.service.list_cases(self._filter, offset, self.page_size),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            self.bus.post(
                PageLoaded(generation, offset, error=f"timed out after {self.timeout}s")
            )
        except UnauthorizedError as e:
            self.bus.post(PageLoaded(generation, offset, error=str(e), unauthorized=True))
        except CaseServiceError as e:
            self.bus.post(PageLoaded(generation, offset, error=str(e)))
        except Exception as e:
            logger.error(f"Unexpected error loading cases at offset {offset}: {e}")
            self.bus.post(PageLoaded(generation, offset, error=str(e)))
        else:
            self.bus.post(PageLoaded(generation, offset, page=page))
