"""Browser loop: the single consumer of background results.

The browser owns the detail controller, the list loader and the status
line. Every fetch, timer and export runs as a separate task and reports
back through the event bus; ``run`` (or ``pump`` in tests) hands each event
to the handler registered for its kind. No handler ever awaits, so the
loop never blocks on the network.
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, Optional

from casedesk.config.settings import Settings
from casedesk.core.detail_controller import DetailFetchController
from casedesk.core.events import (
    Event,
    EventBus,
    EventKind,
    ExportFinished,
    ExportProgressed,
    StatusLevel,
    StatusPosted,
)
from casedesk.core.list_loader import PaginatedListLoader
from casedesk.core.status import StatusLine
from casedesk.exceptions import CaseDeskError
from casedesk.export.engine import CaseExporter
from casedesk.export.progress import CancellationToken, ProgressChannel
from casedesk.models.case import CaseFilter
from casedesk.models.export import ExportOptions, ExportResult, ProgressEvent
from casedesk.models.interfaces import CaseFormatter, CaseService

logger = logging.getLogger(__name__)


class Browser:
    """Interactive case browser state, driven by events.

    Usage:
        browser = Browser(client, settings)
        browser.load(CaseFilter(status=["Open"]))
        await browser.run()
    """

    def __init__(
        self,
        service: CaseService,
        settings: Optional[Settings] = None,
        formatter: Optional[CaseFormatter] = None,
        bus: Optional[EventBus] = None,
    ):
        self.service = service
        self.settings = settings or Settings()
        self.formatter = formatter
        self.bus = bus or EventBus()

        self.status = StatusLine(duration=self.settings.ui.status_seconds)
        self.detail = DetailFetchController(
            service,
            self.bus,
            debounce=self.settings.ui.debounce_ms / 1000,
            timeout=self.settings.api.timeout,
        )
        self.cases = PaginatedListLoader(
            service,
            self.bus,
            page_size=self.settings.ui.page_size,
            timeout=self.settings.api.timeout,
            on_reset=self.detail.clear,
        )

        self.export_progress: Optional[ProgressEvent] = None
        self.last_export: Optional[ExportResult] = None
        self._export_task: Optional[asyncio.Task] = None
        self._export_token: Optional[CancellationToken] = None
        self._stopped = asyncio.Event()

        self._handlers: Dict[EventKind, Callable] = {
            EventKind.DEBOUNCE_ELAPSED: self.detail.on_debounce_elapsed,
            EventKind.DETAIL_LOADED: self.detail.on_detail_loaded,
            EventKind.PAGE_LOADED: self.cases.on_page_loaded,
            EventKind.STATUS_POSTED: self._on_status_posted,
            EventKind.EXPORT_PROGRESSED: self._on_export_progressed,
            EventKind.EXPORT_FINISHED: self._on_export_finished,
        }
        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for events: {sorted(k.value for k in missing)}")

    @property
    def export_running(self) -> bool:
        return self._export_task is not None and not self._export_task.done()

    def dispatch(self, event: Event) -> None:
        self._handlers[event.kind](event)

    def pump(self) -> int:
        """Dispatch every queued event without waiting; returns how many."""
        events = self.bus.drain()
        for event in events:
            self.dispatch(event)
        return len(events)

    async def run(self) -> None:
        """Consume events until ``stop`` is called."""
        self._stopped.clear()
        while not self._stopped.is_set():
            getter = asyncio.ensure_future(self.bus.get())
            stopper = asyncio.ensure_future(self._stopped.wait())
            done, _ = await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()
            if getter in done:
                self.dispatch(getter.result())
            else:
                getter.cancel()

    def stop(self) -> None:
        self._stopped.set()

    def load(self, case_filter: Optional[CaseFilter] = None) -> None:
        """Show cases matching ``case_filter`` (defaults applied from settings)."""
        self.cases.load_first_page(self.settings.with_defaults(case_filter))

    def refresh(self) -> None:
        self.cases.refresh()

    def select(self, case_id: str) -> None:
        self.cases.select(case_id)
        self.detail.on_selection_changed(case_id)

    def select_index(self, index: int) -> None:
        case_id = self.cases.select_index(index)
        if case_id is not None:
            self.detail.on_selection_changed(case_id)

    def scrolled(self, scroll_position: int, viewport_height: int) -> None:
        self.cases.maybe_load_more(scroll_position, viewport_height)

    def start_export(
        self, case_ids: Iterable[str], options: Optional[ExportOptions] = None
    ) -> Optional[asyncio.Task]:
        """Export cases in the background.

        Progress arrives as ExportProgressed events and the outcome as one
        ExportFinished event. Only one export runs at a time.
        """
        if self.export_running:
            self.bus.post(StatusPosted("An export is already running", StatusLevel.WARNING))
            return None

        options = options or self.settings.export_options()
        try:
            exporter = CaseExporter(self.service, formatter=self.formatter, options=options)
        except CaseDeskError as e:
            self.bus.post(StatusPosted(f"Export failed: {e}", StatusLevel.ERROR))
            return None

        self.export_progress = None
        self._export_token = CancellationToken()
        self._export_task = asyncio.create_task(
            self._export(exporter, list(case_ids), options.progress_buffer, self._export_token)
        )
        return self._export_task

    def cancel_export(self) -> None:
        if self._export_token is not None and self.export_running:
            self._export_token.cancel("cancelled by user")

    async def close(self) -> None:
        self.cancel_export()
        if self._export_task is not None:
            await asyncio.gather(self._export_task, return_exceptions=True)
        await self.detail.close()
        await self.cases.close()

    async def _export(
        self,
        exporter: CaseExporter,
        case_ids,
        buffer: int,
        token: CancellationToken,
    ) -> None:
        channel = ProgressChannel(buffer)

        async def forward() -> None:
            async for progress in channel:
                self.bus.post(ExportProgressed(progress))

        forwarder = asyncio.create_task(forward())
        try:
            result = await exporter.export_cases(case_ids, progress=channel, cancel_token=token)
        except CaseDeskError as e:
            logger.error(f"Export failed: {e}")
            finished = ExportFinished(error=str(e))
        else:
            finished = ExportFinished(result=result)
        finally:
            channel.close()
            await forwarder
        self.bus.post(finished)

    def _on_status_posted(self, event: StatusPosted) -> None:
        self.status.post(event.message, event.level)

    def _on_export_progressed(self, event: ExportProgressed) -> None:
        self.export_progress = event.progress

    def _on_export_finished(self, event: ExportFinished) -> None:
        if event.result is None:
            self.status.post(f"Export failed: {event.error}", StatusLevel.ERROR)
            return

        result = event.result
        self.last_export = result
        level = StatusLevel.INFO
        if result.failures or result.cancelled:
            level = StatusLevel.WARNING
        if result.total and not result.succeeded:
            level = StatusLevel.ERROR
        self.status.post(result.summary(), level)
