"""Shared test fixtures and helpers."""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from casedesk.exceptions import CaseNotFoundError, CaseServiceError
from casedesk.models.case import Attachment, Case, Comment, ListPage
from casedesk.models.interfaces import AttachmentStream

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_case(case_number: str, **overrides) -> Case:
    index = int(case_number[-3:]) if case_number[-3:].isdigit() else 0
    values = {
        "case_number": case_number,
        "summary": f"Summary of {case_number}",
        "status": "Waiting on Red Hat",
        "severity": "3 (Normal)",
        "product": "OpenShift",
        "version": "4.14",
        "created_date": BASE_TIME + timedelta(hours=index),
        "last_modified": BASE_TIME + timedelta(days=1, hours=index),
    }
    values.update(overrides)
    return Case(**values)


def make_comment(case_number: str, number: int, **overrides) -> Comment:
    values = {
        "id": f"{case_number}-c{number}",
        "case_number": case_number,
        "comment_body": f"Comment {number} on {case_number}",
        "author": "Jane Engineer",
        "created_date": BASE_TIME + timedelta(minutes=number),
        "public": True,
    }
    values.update(overrides)
    return Comment(**values)


def make_attachment(uuid: str, filename: str, size: int = 2048) -> Attachment:
    return Attachment(uuid=uuid, filename=filename, length=size, created_date=BASE_TIME)


class FakeCaseService:
    """In-memory CaseService.

    ``gates`` holds an event per case number; get_case for that case waits
    until the event is set, which lets a test decide completion order.
    ``fail`` maps a method name to the case numbers it should fail for.
    """

    def __init__(self, cases: Optional[List[Case]] = None, delay: float = 0.0):
        cases = cases or []
        self.cases: Dict[str, Case] = {case.case_number: case for case in cases}
        self.order: List[str] = [case.case_number for case in cases]
        self.comments: Dict[str, List[Comment]] = {}
        self.attachments: Dict[str, List[Attachment]] = {}
        self.files: Dict[Tuple[str, str], bytes] = {}
        self.delay = delay
        self.fail: Dict[str, Set[str]] = defaultdict(set)
        self.gates: Dict[str, asyncio.Event] = {}
        self.list_gate: Optional[asyncio.Event] = None
        self.list_error: Optional[Exception] = None
        self.total_override: Optional[int] = None
        self.calls: List[Tuple[str, Any]] = []
        self.active = 0
        self.peak = 0

    def calls_for(self, method: str) -> List[Any]:
        return [key for name, key in self.calls if name == method]

    async def _call(self, method: str, key: Any, gate: Optional[asyncio.Event] = None) -> None:
        self.calls.append((method, key))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if gate is not None:
                await gate.wait()
            if key in self.fail[method]:
                raise CaseServiceError(f"{method} {key}: service unavailable", status_code=503)
        finally:
            self.active -= 1

    async def list_cases(self, case_filter, offset: int, limit: int) -> ListPage:
        await self._call("list_cases", offset, self.list_gate)
        if self.list_error is not None:
            raise self.list_error
        numbers = self.order[offset:offset + limit]
        total = self.total_override if self.total_override is not None else len(self.order)
        return ListPage(
            items=[self.cases[n] for n in numbers], offset=offset, total_count=total
        )

    async def get_case(self, case_number: str) -> Case:
        await self._call("get_case", case_number, self.gates.get(case_number))
        if case_number not in self.cases:
            raise CaseNotFoundError(f"get case {case_number}: not found")
        return self.cases[case_number]

    async def get_comments(self, case_number: str) -> List[Comment]:
        await self._call("get_comments", case_number)
        return list(self.comments.get(case_number, []))

    async def get_attachments(self, case_number: str) -> List[Attachment]:
        await self._call("get_attachments", case_number)
        return list(self.attachments.get(case_number, []))

    @asynccontextmanager
    async def open_attachment(self, case_number: str, attachment_id: str):
        await self._call("open_attachment", attachment_id)
        body = self.files.get((case_number, attachment_id))
        if body is None:
            raise CaseServiceError(f"download {attachment_id}: not found", status_code=404)

        async def chunks():
            for start in range(0, len(body), 4):
                yield body[start:start + 4]

        yield AttachmentStream(filename="", chunks=chunks())


@pytest.fixture
def cases() -> List[Case]:
    return [make_case(f"01000{n:03d}") for n in range(1, 6)]


@pytest.fixture
def service(cases) -> FakeCaseService:
    return FakeCaseService(cases)


@pytest.fixture
def pump():
    """Deliver bus events to handlers until ``until`` holds or time runs out.

    Usage:
        await pump(bus, handlers, until=lambda: controller.displayed is not None)
        await pump(bus, handlers, seconds=0.2)
    """

    async def _pump(
        bus,
        handlers: Dict[Any, Callable],
        until: Optional[Callable[[], bool]] = None,
        seconds: float = 2.0,
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while True:
            for event in bus.drain():
                handler = handlers.get(event.kind)
                if handler is not None:
                    handler(event)
            if until is not None and until():
                return
            if loop.time() >= deadline:
                if until is not None:
                    raise AssertionError("condition not reached before timeout")
                return
            await asyncio.sleep(0.005)

    return _pump
