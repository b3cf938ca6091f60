"""Selection-driven detail fetching with debounce and caching.

The controller is a small state machine: the current selection, the id
waiting on the debounce timer, the timer handle, and the fetches in
flight. It is driven by three inputs, all delivered on the browser loop:

- ``on_selection_changed``: the user moved to another case
- ``on_debounce_elapsed``: the timer armed for the pending id fired
- ``on_detail_loaded``: a fetch finished

Only the latest selection can trigger a fetch, a given id is never fetched
twice concurrently, and a result for an id the user has since left is
cached but not displayed.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from casedesk.core.events import (
    DebounceElapsed,
    DetailLoaded,
    EventBus,
    StatusLevel,
    StatusPosted,
)
from casedesk.core.service import fetch_case_bundle
from casedesk.exceptions import CaseServiceError, UnauthorizedError
from casedesk.models.case import CaseBundle
from casedesk.models.interfaces import CaseService

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.5
DEFAULT_TIMEOUT = 30.0


class DetailFetchController:
    """Owns the detail cache and decides when to fetch.

    Usage:
        controller = DetailFetchController(service, bus)
        controller.on_selection_changed("01234567")
        # ... the browser loop later delivers DebounceElapsed / DetailLoaded
    """

    def __init__(
        self,
        service: CaseService,
        bus: EventBus,
        debounce: float = DEFAULT_DEBOUNCE,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
    ):
        """Initialize controller.

        Args:
            service: Source of case bundles
            bus: Event bus the results are posted on
            debounce: Quiet period before a selection is fetched (seconds)
            timeout: Deadline of one detail fetch (seconds, None for none)
        """
        self.service = service
        self.bus = bus
        self.debounce = debounce
        self.timeout = timeout

        self._cache: Dict[str, CaseBundle] = {}
        self._selected: Optional[str] = None
        self._pending: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._timer_sequence = 0
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._displayed: Optional[CaseBundle] = None

    @property
    def cache(self) -> Mapping[str, CaseBundle]:
        """Read-only view of the cache."""
        return MappingProxyType(self._cache)

    @property
    def selected(self) -> Optional[str]:
        return self._selected

    @property
    def pending(self) -> Optional[str]:
        """Id waiting on the debounce timer, if any."""
        return self._pending

    @property
    def displayed(self) -> Optional[CaseBundle]:
        """Bundle of the current selection, None while it is loading."""
        return self._displayed

    @property
    def in_flight(self) -> frozenset:
        return frozenset(self._in_flight)

    def on_selection_changed(self, case_id: str) -> None:
        """Handle the user moving to ``case_id``.

        A cached case is displayed at once without a network call; anything
        else (re)arms the debounce timer.
        """
        if case_id == self._selected and (
            self._displayed is not None
            or self._pending == case_id
            or case_id in self._in_flight
        ):
            return

        self._selected = case_id

        bundle = self._cache.get(case_id)
        if bundle is not None:
            self._cancel_timer()
            self._pending = None
            self._displayed = bundle
            return

        self._displayed = None
        self._pending = case_id
        self._arm_timer(case_id)

    def on_debounce_elapsed(self, event: DebounceElapsed) -> None:
        """Fetch the pending id if the selection has not moved since."""
        case_id = event.case_id
        if (
            event.sequence != self._timer_sequence
            or case_id != self._pending
            or case_id != self._selected
        ):
            logger.debug(f"Ignoring stale debounce for case {case_id}")
            return

        self._pending = None
        self._timer = None

        bundle = self._cache.get(case_id)
        if bundle is not None:
            self._displayed = bundle
            return
        if case_id in self._in_flight:
            return

        self._start_fetch(case_id)

    def on_detail_loaded(self, event: DetailLoaded) -> None:
        """Cache a fetched bundle and display it if still selected."""
        case_id = event.case_id
        if self._in_flight.pop(case_id, None) is None:
            logger.debug(f"Dropping result for case {case_id} fetched before a reset")
            return

        if event.bundle is None:
            message = f"Failed to load case {case_id}: {event.error}"
            if event.unauthorized:
                message = f"Not authorized to load case {case_id}, re-authenticate and retry"
            self.bus.post(StatusPosted(message, StatusLevel.ERROR))
            return

        self._cache[case_id] = event.bundle
        if case_id != self._selected:
            logger.debug(f"Cached case {case_id}, selection moved to {self._selected}")
            return

        self._displayed = event.bundle
        if event.bundle.is_partial:
            missing = [
                name
                for name, error in (
                    ("comments", event.bundle.comments_error),
                    ("attachments", event.bundle.attachments_error),
                )
                if error
            ]
            self.bus.post(
                StatusPosted(
                    f"Case {case_id} loaded without {' and '.join(missing)}",
                    StatusLevel.WARNING,
                )
            )

    def clear(self) -> None:
        """Forget everything: cache, selection, timer and in-flight fetches."""
        self._cancel_timer()
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        self._cache.clear()
        self._selected = None
        self._pending = None
        self._displayed = None

    async def close(self) -> None:
        tasks = list(self._in_flight.values())
        self.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _arm_timer(self, case_id: str) -> None:
        self._cancel_timer()
        self._timer_sequence += 1
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            self.debounce, self.bus.post, DebounceElapsed(case_id, self._timer_sequence)
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_fetch(self, case_id: str) -> None:
        logger.debug(f"Fetching detail for case {case_id}")
        self._in_flight[case_id] = asyncio.create_task(self._fetch(case_id))

    async def _fetch(self, case_id: str) -> None:
        try:
            bundle = await asyncio.wait_for(
                fetch_case_bundle(self.service, case_id), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self.bus.post(DetailLoaded(case_id, error=f"timed out after {self.timeout}s"))
        except UnauthorizedError as e:
            self.bus.post(DetailLoaded(case_id, error=str(e), unauthorized=True))
        except CaseServiceError as e:
            self.bus.post(DetailLoaded(case_id, error=str(e)))
        except Exception as e:
            logger.error(f"Unexpected error loading case {case_id}: {e}")
            self.bus.post(DetailLoaded(case_id, error=str(e)))
        else:
            self.bus.post(DetailLoaded(case_id, bundle=bundle))
