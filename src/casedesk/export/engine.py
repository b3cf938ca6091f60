"""Bulk export of cases to Markdown.

One export run turns N case numbers into documents under a fixed pool of
``min(concurrency, N)`` workers. Workers pull case numbers from a queue in
input order and take each case through

    fetch case → fetch comments → fetch attachments → format → write

one step at a time. A failing case is recorded and the run moves on; the
run result always covers every case as exported, failed or cancelled.

In combined mode a task stops after fetching. The buffered bundles are
rendered by the formatter's ``format_cases`` and written as one file, in
input order, after every task has finished. The manifest is written once,
at the very end.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Dict, Iterable, List, Optional, Set, TypeVar

from casedesk.core.service import collect_case_numbers, fetch_case_bundle
from casedesk.exceptions import CaseDeskError, CaseServiceError, CaseServiceTimeout, ExportError
from casedesk.export.formatter import MarkdownFormatter
from casedesk.export.progress import CancellationToken, ProgressChannel
from casedesk.models.case import Attachment, CaseBundle, CaseFilter
from casedesk.models.export import (
    CASE_FILENAME,
    ExportFailure,
    ExportOptions,
    ExportResult,
    Manifest,
    ManifestEntry,
    ManifestFilters,
    ProgressEvent,
    TaskState,
)
from casedesk.models.interfaces import CaseFormatter, CaseService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _TaskCancelled(Exception):
    """Cancellation observed between two steps of a task."""


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _safe_filename(name: str, fallback: str) -> str:
    """Strip any directory part a server-supplied filename might carry."""
    name = Path(name.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return fallback
    return name


def _relative(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return str(path)


def manifest_filters(case_filter: Optional[CaseFilter]) -> Optional[ManifestFilters]:
    """Summarize a case filter for the manifest."""
    if case_filter is None:
        return None
    return ManifestFilters(
        status=case_filter.status,
        severity=case_filter.severity,
        products=case_filter.products,
        keyword=case_filter.keyword,
        since=case_filter.start_date.isoformat() if case_filter.start_date else None,
        until=case_filter.end_date.isoformat() if case_filter.end_date else None,
    )


class _ExportRun:
    """Bookkeeping of one run.

    Only touched from the event loop, one task result at a time; results
    are keyed by input index so the manifest can be assembled in input
    order regardless of completion order.
    """

    def __init__(
        self,
        case_ids: List[str],
        progress: Optional[ProgressChannel],
        token: CancellationToken,
    ):
        self.case_ids = case_ids
        self.total = len(case_ids)
        self.progress = progress
        self.token = token
        self.completed = 0
        self.entries: Dict[int, ManifestEntry] = {}
        self.failures: Dict[int, ExportFailure] = {}
        self.cancelled: Set[int] = set()
        self.bundles: Dict[int, CaseBundle] = {}

    def emit(self, case_id: str, step: str) -> None:
        if self.progress is None:
            return
        self.progress.publish(
            ProgressEvent(
                total_tasks=self.total,
                completed_tasks=self.completed,
                current_task=case_id,
                current_step=step,
            )
        )

    def check(self) -> None:
        if self.token.is_cancelled:
            raise _TaskCancelled()

    def is_settled(self, index: int) -> bool:
        return (
            index in self.entries
            or index in self.failures
            or index in self.cancelled
            or index in self.bundles
        )


class CaseExporter:
    """Exports cases to Markdown files with bounded parallelism.

    Usage:
        exporter = CaseExporter(client, options=ExportOptions(output_dir=Path("out")))
        result = await exporter.export_cases(["01234567", "01234568"])
        print(result.summary())
    """

    def __init__(
        self,
        service: CaseService,
        formatter: Optional[CaseFormatter] = None,
        options: Optional[ExportOptions] = None,
    ):
        """Initialize exporter.

        Args:
            service: Source of case data
            formatter: Document renderer (default: MarkdownFormatter built
                from the options' template)
            options: Export configuration

        Raises:
            FormatterError: If the configured template cannot be loaded
        """
        self.service = service
        self.options = options or ExportOptions()
        self.formatter = formatter or MarkdownFormatter.from_options(self.options)

        self.task_states: Dict[str, TaskState] = {}
        self.active_tasks = 0
        self.peak_active = 0

    async def fetch_bundle(self, case_id: str) -> CaseBundle:
        """Fetch a complete bundle; any missing piece is an error."""
        return await self._call(
            fetch_case_bundle(self.service, case_id, strict=True), f"fetch case {case_id}"
        )

    async def export_case_to_file(self, case_id: str, path: Path) -> Path:
        """Export one case to ``path``.

        Raises:
            CaseServiceError: If the case could not be fetched
            FormatterError: If the document could not be rendered
            ExportError: If the file could not be written
        """
        bundle = await self.fetch_bundle(case_id)
        document = self.formatter.format_case(bundle)
        path = Path(path)
        try:
            await asyncio.to_thread(_write_text, path, document)
        except OSError as e:
            raise ExportError(f"failed to write {path}: {e}") from e
        logger.info(f"Exported case {case_id} to {path}")
        return path

    async def export_with_filter(
        self,
        case_filter: Optional[CaseFilter],
        progress: Optional[ProgressChannel] = None,
        cancel_token: Optional[CancellationToken] = None,
        page_size: int = 100,
    ) -> ExportResult:
        """Export every case matching ``case_filter``.

        Raises:
            ExportError: If the matching cases could not be listed
        """
        try:
            case_ids = await self._call(
                collect_case_numbers(self.service, case_filter, page_size), "list cases"
            )
        except CaseServiceError as e:
            if progress is not None:
                progress.close()
            logger.error(f"Failed to list cases for export: {e}")
            raise ExportError(f"failed to list cases: {e}") from e

        if not case_ids:
            logger.info("No cases match the export filter")
        return await self.export_cases(
            case_ids,
            progress=progress,
            cancel_token=cancel_token,
            filters=manifest_filters(case_filter),
        )

    async def export_cases(
        self,
        case_ids: Iterable[str],
        progress: Optional[ProgressChannel] = None,
        cancel_token: Optional[CancellationToken] = None,
        filters: Optional[ManifestFilters] = None,
    ) -> ExportResult:
        """Export the given cases.

        Per-case failures never raise; they are reported in the result and
        the manifest. The progress channel, if given, is closed when the run
        ends.

        Args:
            case_ids: Case numbers, in the order documents should appear
            progress: Channel receiving ProgressEvents
            cancel_token: Token the caller can use to stop the run
            filters: Filters that produced ``case_ids`` (recorded in the manifest)

        Returns:
            ExportResult

        Raises:
            ExportError: If the output directory cannot be created
        """
        case_ids = list(case_ids)
        options = self.options
        token = cancel_token or CancellationToken()
        run = _ExportRun(case_ids, progress, token)

        self.task_states = {case_id: TaskState.PENDING for case_id in case_ids}
        self.active_tasks = 0
        self.peak_active = 0

        logger.info(
            f"Exporting {run.total} cases to {options.output_dir} "
            f"(concurrency={options.concurrency}, combined={options.combined}, "
            f"attachments={options.include_attachments})"
        )

        try:
            try:
                await asyncio.to_thread(options.output_dir.mkdir, parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Failed to create output directory {options.output_dir}: {e}")
                raise ExportError(
                    f"failed to create output directory {options.output_dir}: {e}"
                ) from e

            await self._run_workers(run)

            for index, case_id in enumerate(case_ids):
                if not run.is_settled(index):
                    self._cancel_task(run, index, case_id)
                    run.completed += 1

            combined_path = None
            if options.combined:
                combined_path = await self._write_combined(run)

            manifest = Manifest(
                total_cases=run.total,
                filters_applied=filters,
                cases=[run.entries[i] for i in sorted(run.entries)],
                failures=[run.failures[i] for i in sorted(run.failures)],
                cancelled=[case_ids[i] for i in sorted(run.cancelled)],
            )
            manifest_path = await self._save_manifest(manifest)
            run.emit("", "Complete")
        finally:
            if progress is not None:
                progress.close()

        result = ExportResult(
            manifest=manifest,
            failures=manifest.failures,
            cancelled=manifest.cancelled,
            manifest_path=manifest_path,
            combined_path=combined_path,
        )
        if result.failures:
            logger.warning(result.error)
        logger.info(result.summary())
        return result

    async def _run_workers(self, run: _ExportRun) -> None:
        queue: asyncio.Queue = asyncio.Queue()
        for item in enumerate(run.case_ids):
            queue.put_nowait(item)

        worker_count = min(self.options.concurrency, run.total)
        workers = [asyncio.create_task(self._worker(queue, run)) for _ in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            for worker in workers:
                worker.cancel()
            raise

    async def _worker(self, queue: asyncio.Queue, run: _ExportRun) -> None:
        while not run.token.is_cancelled:
            try:
                index, case_id = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self._run_task(run, index, case_id)

    async def _run_task(self, run: _ExportRun, index: int, case_id: str) -> None:
        self.active_tasks += 1
        self.peak_active = max(self.peak_active, self.active_tasks)
        try:
            await self._process(run, index, case_id)
        except _TaskCancelled:
            logger.info(
                f"Case {case_id} stopped after cancellation "
                f"(was {self.task_states[case_id].value})"
            )
            self._cancel_task(run, index, case_id)
        except Exception as e:
            step = self.task_states[case_id]
            logger.error(f"Export of case {case_id} failed while {step.value}: {e}")
            run.failures[index] = ExportFailure(case_number=case_id, step=step, error=str(e))
            self._set_state(case_id, TaskState.FAILED)
        finally:
            self.active_tasks -= 1
            run.completed += 1
            run.emit(case_id, self.task_states[case_id].value)

    async def _process(self, run: _ExportRun, index: int, case_id: str) -> None:
        options = self.options

        self._set_state(case_id, TaskState.FETCHING)
        run.emit(case_id, "Fetching case")
        case = await self._call(self.service.get_case(case_id), f"get case {case_id}")
        run.check()

        run.emit(case_id, "Fetching comments")
        comments = await self._call(
            self.service.get_comments(case_id), f"get comments for case {case_id}"
        )
        run.check()

        run.emit(case_id, "Fetching attachments")
        attachments = await self._call(
            self.service.get_attachments(case_id), f"get attachments for case {case_id}"
        )
        run.check()

        bundle = CaseBundle(case=case, comments=comments, attachments=attachments)

        if options.combined:
            self._set_state(case_id, TaskState.WRITING)
            run.bundles[index] = bundle
            self._set_state(case_id, TaskState.DONE)
            return

        self._set_state(case_id, TaskState.FORMATTING)
        run.emit(case_id, "Formatting")
        document = self.formatter.format_case(bundle)
        run.check()

        self._set_state(case_id, TaskState.WRITING)
        run.emit(case_id, "Writing")
        case_dir = options.output_dir / case_id
        await asyncio.to_thread(_write_text, case_dir / CASE_FILENAME, document)

        downloaded = 0
        if options.include_attachments and attachments:
            downloaded = await self._download_attachments(
                run, case_id, attachments, case_dir / options.attachments_dir
            )

        run.entries[index] = ManifestEntry(
            case_number=case_id,
            summary=case.summary,
            file=f"{case_id}/{CASE_FILENAME}",
            attachment_count=len(attachments),
            attachments_downloaded=downloaded,
        )
        self._set_state(case_id, TaskState.DONE)

    async def _download_attachments(
        self,
        run: _ExportRun,
        case_id: str,
        attachments: List[Attachment],
        directory: Path,
    ) -> int:
        """Download attachments; a failed download is logged and skipped."""
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)

        downloaded = 0
        for attachment in attachments:
            if run.token.is_cancelled:
                logger.info(f"Skipping remaining attachments of case {case_id} after cancellation")
                break
            run.emit(case_id, f"Downloading {attachment.filename}")
            try:
                await self._call(
                    self._download(case_id, attachment, directory),
                    f"download {attachment.filename} of case {case_id}",
                )
                downloaded += 1
            except (CaseDeskError, OSError) as e:
                logger.warning(
                    f"Failed to download attachment {attachment.filename} of case {case_id}: {e}"
                )
        return downloaded

    async def _download(self, case_id: str, attachment: Attachment, directory: Path) -> Path:
        async with self.service.open_attachment(case_id, attachment.uuid) as stream:
            filename = _safe_filename(stream.filename or attachment.filename, attachment.uuid)
            path = directory / filename
            with open(path, "wb") as handle:
                async for chunk in stream.chunks:
                    await asyncio.to_thread(handle.write, chunk)
        logger.debug(f"Downloaded {path}")
        return path

    async def _write_combined(self, run: _ExportRun) -> Optional[Path]:
        """Render buffered bundles as one document and write it, in input order."""
        indices = sorted(run.bundles)

        if run.token.is_cancelled:
            logger.info("Skipping combined document after cancellation")
            for index in indices:
                self._cancel_task(run, index, run.case_ids[index])
            run.bundles.clear()
            return None
        if not indices:
            return None

        path = self.options.combined_path
        run.emit("", "Formatting combined document")
        try:
            text = self.formatter.format_cases([run.bundles[index] for index in indices])
        except Exception as e:
            logger.error(f"Failed to format combined document: {e}")
            self._fail_combined(
                run, indices, TaskState.FORMATTING, f"failed to format combined document: {e}"
            )
            return None

        try:
            await asyncio.to_thread(_write_text, path, text)
        except OSError as e:
            logger.error(f"Failed to write combined document {path}: {e}")
            self._fail_combined(
                run, indices, TaskState.WRITING, f"failed to write combined document {path}: {e}"
            )
            return None

        file = _relative(path, self.options.output_dir)
        for index in indices:
            bundle = run.bundles[index]
            run.entries[index] = ManifestEntry(
                case_number=bundle.case_number,
                summary=bundle.case.summary,
                file=file,
                attachment_count=len(bundle.attachments),
            )
        logger.info(f"Wrote {len(indices)} cases to {path}")
        return path

    def _fail_combined(
        self, run: _ExportRun, indices: List[int], step: TaskState, error: str
    ) -> None:
        for index in indices:
            case_id = run.case_ids[index]
            run.failures[index] = ExportFailure(case_number=case_id, step=step, error=error)
            self._set_state(case_id, TaskState.FAILED)

    async def _save_manifest(self, manifest: Manifest) -> Optional[Path]:
        path = self.options.manifest_path
        try:
            await asyncio.to_thread(manifest.save, path)
        except OSError as e:
            logger.error(f"Failed to write manifest {path}: {e}")
            return None
        return path

    def _cancel_task(self, run: _ExportRun, index: int, case_id: str) -> None:
        run.cancelled.add(index)
        self._set_state(case_id, TaskState.CANCELLED)

    def _set_state(self, case_id: str, state: TaskState) -> None:
        previous = self.task_states.get(case_id, TaskState.PENDING)
        logger.debug(f"Case {case_id}: {previous.value} -> {state.value}")
        self.task_states[case_id] = state

    async def _call(self, awaitable: Awaitable[T], what: str) -> T:
        """Await a remote call under the per-call deadline, if any."""
        timeout = self.options.request_timeout
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CaseServiceTimeout(f"{what}: timed out after {timeout}s") from e
