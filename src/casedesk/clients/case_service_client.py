"""HTTP client for the remote case service."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Sequence

import httpx

from casedesk.auth.token_provider import TokenProvider
from casedesk.clients.base import BaseServiceClient
from casedesk.clients.search import (
    KB_SEARCH_PATH,
    SEARCH_PATH,
    build_kb_request,
    build_search_request,
    case_from_search_doc,
    result_from_kb_doc,
)
from casedesk.core.service import (
    collect_accounts,
    collect_case_numbers,
    fetch_case_bundle,
    find_cases,
)
from casedesk.exceptions import CaseServiceError, CaseServiceTimeout
from casedesk.models.case import (
    Account,
    Attachment,
    Case,
    CaseBundle,
    CaseFilter,
    Comment,
    ListPage,
    SearchResult,
)
from casedesk.models.interfaces import AttachmentStream

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.access.redhat.com"
DEFAULT_SEARCH_URL = "https://access.redhat.com"
DEFAULT_SEARCH_LIMIT = 10


def _unwrap_list(payload: Any, key: str, what: str) -> List[Any]:
    """Accept both a raw JSON array and ``{key: [...]}``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        return payload[key]
    raise CaseServiceError(f"{what}: unexpected response shape")


def _filename_from_disposition(header: str) -> str:
    marker = "filename="
    index = header.find(marker)
    if index == -1:
        return ""
    return header[index + len(marker):].split(";")[0].strip().strip('"')


class CaseServiceClient(BaseServiceClient):
    """Async HTTP client for the case service REST API.

    This client provides a Pythonic interface to the case endpoints and the
    case search endpoint, handling serialization/deserialization and error
    mapping.

    Usage:
        client = CaseServiceClient(token_provider=TokenProvider(token="..."))
        case = await client.get_case("01234567")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        search_url: Optional[str] = DEFAULT_SEARCH_URL,
        timeout: float = 30.0,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        closed_statuses: Sequence[str] = ("Closed",),
    ):
        """Initialize client.

        Args:
            base_url: Base URL of the case REST API
            search_url: Base URL of the search service (defaults to base_url)
            timeout: Request timeout in seconds (default: 30.0)
            token_provider: Source of bearer tokens
            transport: Optional httpx transport (tests)
            closed_statuses: Status values hidden unless closed cases are requested
        """
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            token_provider=token_provider,
            transport=transport,
        )
        self.search_url = (search_url or base_url).rstrip("/")
        self.closed_statuses = tuple(closed_statuses)

    async def list_cases(
        self, case_filter: Optional[CaseFilter], offset: int, limit: int
    ) -> ListPage:
        """List one page of cases, newest-modified first.

        Args:
            case_filter: Filter criteria (None lists open cases)
            offset: Index of the first result
            limit: Maximum number of results

        Returns:
            ListPage with the server's total count
        """
        body = build_search_request(case_filter, offset, limit, self.closed_statuses)
        response = await self._request(
            "POST", f"{self.search_url}{SEARCH_PATH}", what="list cases", json=body
        )
        payload = self._json(response, "list cases")

        try:
            result = payload["response"]
            docs = result.get("docs") or []
            total = int(result.get("numFound", len(docs)))
            start = int(result.get("start", offset))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CaseServiceError(f"list cases: unexpected response shape: {e}") from e

        return ListPage(
            items=[case_from_search_doc(doc) for doc in docs],
            offset=start,
            total_count=total,
        )

    async def list_all_case_numbers(
        self, case_filter: Optional[CaseFilter], page_size: int = 100
    ) -> List[str]:
        """Page through every case matching the filter.

        Returns:
            Case numbers in server order
        """
        return await collect_case_numbers(self, case_filter, page_size)

    async def list_accounts(self, page_size: int = 100) -> List[Account]:
        """Accounts named on every case visible to the caller."""
        return await collect_accounts(self, page_size)

    async def search_cases(
        self, query: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> List[SearchResult]:
        """Keyword search over cases, closed ones included."""
        return await find_cases(self, query, limit if limit > 0 else DEFAULT_SEARCH_LIMIT)

    async def search_knowledge_base(
        self, query: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> List[SearchResult]:
        """Search solutions and articles.

        Args:
            query: Free text query
            limit: Maximum number of results (values below 1 use the default)

        Returns:
            SearchResults typed "solution" or "article", in relevance order
        """
        if limit < 1:
            limit = DEFAULT_SEARCH_LIMIT
        what = "search knowledge base"
        response = await self._request(
            "POST", self._url(KB_SEARCH_PATH), what=what, json=build_kb_request(query, limit)
        )
        payload = self._json(response, what)

        try:
            docs = payload["response"].get("docs") or []
        except (KeyError, TypeError, AttributeError) as e:
            raise CaseServiceError(f"{what}: unexpected response shape: {e}") from e

        return [result_from_kb_doc(doc) for doc in docs]

    async def get_case(self, case_number: str) -> Case:
        """Get case by number.

        Raises:
            CaseNotFoundError: If the case does not exist
            CaseServiceError: On any other failure
        """
        what = f"get case {case_number}"
        response = await self._request("GET", self._url(f"/support/v1/cases/{case_number}"), what)
        return self._validate(Case, self._json(response, what), what)

    async def get_comments(self, case_number: str) -> List[Comment]:
        """Get all comments of a case."""
        what = f"get comments for case {case_number}"
        response = await self._request(
            "GET", self._url(f"/support/v1/cases/{case_number}/comments"), what
        )
        items = _unwrap_list(self._json(response, what), "comments", what)
        return [self._validate(Comment, item, what) for item in items]

    async def get_attachments(self, case_number: str) -> List[Attachment]:
        """Get attachment metadata of a case."""
        what = f"get attachments for case {case_number}"
        response = await self._request(
            "GET", self._url(f"/support/v1/cases/{case_number}/attachments"), what
        )
        items = _unwrap_list(self._json(response, what), "attachments", what)
        return [self._validate(Attachment, item, what) for item in items]

    async def get_case_bundle(self, case_number: str, strict: bool = False) -> CaseBundle:
        """Get a case with its comments and attachments.

        Args:
            case_number: Case to fetch
            strict: Raise if comments or attachments fail instead of
                returning a partial bundle
        """
        return await fetch_case_bundle(self, case_number, strict=strict)

    @asynccontextmanager
    async def open_attachment(
        self, case_number: str, attachment_id: str
    ) -> AsyncIterator[AttachmentStream]:
        """Stream an attachment body.

        Usage:
            async with client.open_attachment("01234567", uuid) as stream:
                async for chunk in stream.chunks:
                    ...
        """
        what = f"download attachment {attachment_id} of case {case_number}"
        url = self._url(f"/support/v1/cases/{case_number}/attachments/{attachment_id}")
        headers = self._headers(await self._get_token())
        headers["Accept"] = "*/*"

        try:
            async with self._get_client() as client:
                async with client.stream("GET", url, headers=headers) as response:
                    self._raise_for_status(response, what)
                    filename = _filename_from_disposition(
                        response.headers.get("Content-Disposition", "")
                    )
                    yield AttachmentStream(filename=filename, chunks=response.aiter_bytes())
        except httpx.TimeoutException as e:
            raise CaseServiceTimeout(f"{what}: request timed out") from e
        except httpx.HTTPError as e:
            raise CaseServiceError(f"{what}: request failed: {e}") from e

    @staticmethod
    def _validate(model, data: Any, what: str):
        try:
            return model.model_validate(data)
        except ValueError as e:
            raise CaseServiceError(f"{what}: invalid payload: {e}") from e
