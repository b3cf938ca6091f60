"""Interfaces of the collaborators the core depends on.

The core never talks HTTP or renders documents itself; it is handed an
object satisfying ``CaseService`` and one satisfying ``CaseFormatter``.
``CaseServiceClient`` and ``MarkdownFormatter`` are the production
implementations; tests use in-memory fakes.
"""

from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, List, Optional, Sequence

from typing_extensions import Protocol

from casedesk.models.case import Attachment, Case, CaseBundle, CaseFilter, Comment, ListPage


@dataclass
class AttachmentStream:
    """An open attachment download.

    Attributes:
        filename: Server-suggested filename (empty if none was sent)
        chunks: Async iterator over the body
    """

    filename: str
    chunks: AsyncIterator[bytes]


class CaseService(Protocol):
    """Remote case service as seen by the core.

    Every method may raise ``CaseServiceError`` (or a subclass).
    """

    async def list_cases(
        self, case_filter: Optional[CaseFilter], offset: int, limit: int
    ) -> ListPage: ...

    async def get_case(self, case_number: str) -> Case: ...

    async def get_comments(self, case_number: str) -> List[Comment]: ...

    async def get_attachments(self, case_number: str) -> List[Attachment]: ...

    def open_attachment(
        self, case_number: str, attachment_id: str
    ) -> AsyncContextManager[AttachmentStream]: ...


class CaseFormatter(Protocol):
    """Pure, synchronous document renderer."""

    def format_case(self, bundle: CaseBundle) -> str: ...

    def format_cases(self, bundles: Sequence[CaseBundle]) -> str: ...
