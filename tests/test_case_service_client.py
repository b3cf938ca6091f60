"""Tests for the case service HTTP client, against a mocked transport."""

import json

import httpx
import pytest

from casedesk.auth.token_provider import TokenProvider
from casedesk.clients.case_service_client import CaseServiceClient
from casedesk.clients.search import (
    KB_SEARCH_PATH,
    SEARCH_PATH,
    build_filter_queries,
    build_search_request,
)
from casedesk.exceptions import (
    CaseNotFoundError,
    CaseServiceError,
    CaseServiceTimeout,
    UnauthorizedError,
)
from casedesk.models.case import CaseFilter

BASE_URL = "https://api.example.com"
SEARCH_URL = "https://search.example.com"

CASE_PAYLOAD = {
    "caseNumber": "01234567",
    "summary": "Pods stuck in ContainerCreating",
    "status": "Waiting on Red Hat",
    "severity": "2 (High)",
    "product": "OpenShift Container Platform",
    "version": "4.14",
    "createdDate": "2024-03-01T12:00:00Z",
    "lastModifiedDate": "",
    "accountNumber": "540155",
}


def _client(handler, token_provider=None):
    return CaseServiceClient(
        base_url=BASE_URL,
        search_url=SEARCH_URL,
        token_provider=token_provider or TokenProvider(token="t0"),
        transport=httpx.MockTransport(handler),
    )


def _search_response(docs, num_found=None, start=0):
    return {"response": {"numFound": num_found if num_found is not None else len(docs),
                         "start": start, "docs": docs}}


# ---------------------------------------------------------------------------
# Case endpoints
# ---------------------------------------------------------------------------

class TestGetCase:
    @pytest.mark.asyncio
    async def test_get_case(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=CASE_PAYLOAD)

        case = await _client(handler).get_case("01234567")

        assert case.case_number == "01234567"
        assert case.severity == "2 (High)"
        assert case.created_date.year == 2024
        assert case.last_modified is None
        assert seen[0].url.path == "/support/v1/cases/01234567"
        assert seen[0].headers["Authorization"] == "Bearer t0"

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = _client(lambda request: httpx.Response(404, text="no such case"))

        with pytest.raises(CaseNotFoundError):
            await client.get_case("00000000")

    @pytest.mark.asyncio
    async def test_server_error_carries_status(self):
        client = _client(lambda request: httpx.Response(503, text="maintenance"))

        with pytest.raises(CaseServiceError) as excinfo:
            await client.get_case("01234567")

        assert excinfo.value.status_code == 503
        assert "maintenance" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(CaseServiceTimeout):
            await _client(handler).get_case("01234567")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = _client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(CaseServiceError, match="decode"):
            await client.get_case("01234567")


class TestCommentsAndAttachments:
    @pytest.mark.asyncio
    async def test_comments_raw_list(self):
        body = [{"id": "c1", "commentBody": "Please attach a must-gather", "isPublic": True,
                 "createdDate": "2024-03-01T13:00:00Z", "createdBy": "Support Engineer"}]
        client = _client(lambda request: httpx.Response(200, json=body))

        comments = await client.get_comments("01234567")

        assert comments[0].body == "Please attach a must-gather"
        assert comments[0].is_public
        assert comments[0].author == "Support Engineer"

    @pytest.mark.asyncio
    async def test_attachments_wrapped_list(self):
        body = {"attachments": [{"uuid": "abc", "fileName": "sos.tar.xz", "fileSize": 4096}]}
        client = _client(lambda request: httpx.Response(200, json=body))

        attachments = await client.get_attachments("01234567")

        assert attachments[0].filename == "sos.tar.xz"
        assert attachments[0].byte_size == 4096

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        client = _client(lambda request: httpx.Response(200, json={"unexpected": True}))

        with pytest.raises(CaseServiceError, match="unexpected response shape"):
            await client.get_comments("01234567")

    @pytest.mark.asyncio
    async def test_bundle_tolerates_missing_comments(self):
        def handler(request):
            if request.url.path.endswith("/comments"):
                return httpx.Response(500, text="boom")
            if request.url.path.endswith("/attachments"):
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=CASE_PAYLOAD)

        bundle = await _client(handler).get_case_bundle("01234567")

        assert bundle.is_partial
        assert "500" in bundle.comments_error
        assert bundle.attachments_error is None

    @pytest.mark.asyncio
    async def test_strict_bundle_raises(self):
        def handler(request):
            if request.url.path.endswith("/comments"):
                return httpx.Response(500, text="boom")
            if request.url.path.endswith("/attachments"):
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=CASE_PAYLOAD)

        with pytest.raises(CaseServiceError):
            await _client(handler).get_case_bundle("01234567", strict=True)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class TestAuthorization:
    @pytest.mark.asyncio
    async def test_401_refreshes_token_and_replays_once(self):
        tokens = []

        async def refresh():
            return "t1"

        def handler(request):
            tokens.append(request.headers.get("Authorization"))
            if request.headers.get("Authorization") == "Bearer t0":
                return httpx.Response(401)
            return httpx.Response(200, json=CASE_PAYLOAD)

        provider = TokenProvider(token="t0", refresher=refresh)
        case = await _client(handler, provider).get_case("01234567")

        assert case.case_number == "01234567"
        assert tokens == ["Bearer t0", "Bearer t1"]

    @pytest.mark.asyncio
    async def test_401_without_refresher_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        with pytest.raises(UnauthorizedError):
            await _client(handler).get_case("01234567")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_second_401_propagates(self):
        calls = []

        async def refresh():
            return "t1"

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        provider = TokenProvider(token="t0", refresher=refresh)
        with pytest.raises(UnauthorizedError):
            await _client(handler, provider).get_case("01234567")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_failing_refresher_is_unauthorized(self):
        async def refresh():
            raise RuntimeError("sso down")

        provider = TokenProvider(refresher=refresh)
        client = _client(lambda request: httpx.Response(200, json=CASE_PAYLOAD), provider)

        with pytest.raises(UnauthorizedError, match="sso down"):
            await client.get_case("01234567")


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class TestListCases:
    @pytest.mark.asyncio
    async def test_list_cases_posts_search(self):
        requests = []
        docs = [
            {"case_number": "01234567", "case_summary": "First", "case_status": "Open",
             "case_product": ["RHEL"], "case_lastModifiedDate": "2024-03-02T00:00:00Z"},
            {"case_number": "01234568", "case_summary": "Second", "case_product": "OpenShift"},
        ]

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=_search_response(docs, num_found=42, start=20))

        page = await _client(handler).list_cases(CaseFilter(keyword="etcd"), 20, 2)

        assert [case.case_number for case in page.items] == ["01234567", "01234568"]
        assert page.items[0].product == "RHEL"
        assert page.items[1].product == "OpenShift"
        assert page.total_count == 42
        assert page.offset == 20
        assert str(requests[0].url) == f"{SEARCH_URL}{SEARCH_PATH}"
        body = json.loads(requests[0].content)
        assert body["q"] == "etcd"
        assert body["start"] == 20
        assert body["rows"] == 2

    @pytest.mark.asyncio
    async def test_list_all_case_numbers_pages(self):
        all_docs = [{"case_number": f"0100000{n}"} for n in range(5)]

        def handler(request):
            body = json.loads(request.content)
            start, rows = body["start"], body["rows"]
            return httpx.Response(
                200, json=_search_response(all_docs[start:start + rows], num_found=5, start=start)
            )

        numbers = await _client(handler).list_all_case_numbers(None, page_size=2)

        assert numbers == [doc["case_number"] for doc in all_docs]

    @pytest.mark.asyncio
    async def test_malformed_search_response(self):
        client = _client(lambda request: httpx.Response(200, json={"hits": []}))

        with pytest.raises(CaseServiceError, match="unexpected response shape"):
            await client.list_cases(None, 0, 10)


class TestSearchRequest:
    def test_closed_cases_excluded_by_default(self):
        clauses = build_filter_queries(CaseFilter())

        assert clauses == ['-case_status:"Closed"']

    def test_explicit_status_and_severity(self):
        clauses = build_filter_queries(
            CaseFilter(status=["Open", "Closed"], severity=["1 (Urgent)"], accounts=["540155"])
        )

        assert 'case_status:("Open" OR "Closed")' in clauses
        assert 'case_severity:"1 (Urgent)"' in clauses
        assert 'case_accountNumber:"540155"' in clauses
        assert not any(clause.startswith("-case_status") for clause in clauses)

    def test_include_closed(self):
        assert build_filter_queries(CaseFilter(include_closed=True)) == []

    def test_request_body(self):
        body = build_search_request(None, 0, 100)

        assert body["q"] == "*:*"
        assert body["rows"] == 100
        assert "sort=case_lastModifiedDate+desc" in body["expression"]


# ---------------------------------------------------------------------------
# Attachment download
# ---------------------------------------------------------------------------

class TestOpenAttachment:
    @pytest.mark.asyncio
    async def test_streams_body_and_filename(self):
        def handler(request):
            assert request.url.path == "/support/v1/cases/01234567/attachments/abc"
            return httpx.Response(
                200,
                content=b"log contents",
                headers={"Content-Disposition": 'attachment; filename="journal.log"'},
            )

        async with _client(handler).open_attachment("01234567", "abc") as stream:
            body = b"".join([chunk async for chunk in stream.chunks])

        assert stream.filename == "journal.log"
        assert body == b"log contents"

    @pytest.mark.asyncio
    async def test_missing_attachment(self):
        client = _client(lambda request: httpx.Response(404))

        with pytest.raises(CaseNotFoundError):
            async with client.open_attachment("01234567", "abc"):
                pass


# ---------------------------------------------------------------------------
# Knowledge base, case search and accounts
# ---------------------------------------------------------------------------

class TestSearchAndAccounts:
    @pytest.mark.asyncio
    async def test_knowledge_base_search(self):
        requests = []
        docs = [
            {"id": "123", "allTitle": "Node NotReady after upgrade", "documentKind": "Solution",
             "view_uri": "https://access.example.com/solutions/123", "uri": "ignored"},
            {"id": "456", "publishedTitle": "Tuning etcd", "documentKind": "Documentation",
             "abstract": "Disk latency guidance", "uri": "https://access.example.com/articles/456"},
        ]

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=_search_response(docs))

        results = await _client(handler).search_knowledge_base("etcd", limit=5)

        assert [(r.type, r.id, r.title) for r in results] == [
            ("solution", "123", "Node NotReady after upgrade"),
            ("article", "456", "Tuning etcd"),
        ]
        assert results[0].uri == "https://access.example.com/solutions/123"
        assert results[1].abstract == "Disk latency guidance"
        assert str(requests[0].url) == f"{BASE_URL}{KB_SEARCH_PATH}"
        assert json.loads(requests[0].content) == {"q": "etcd", "rows": 5}

    @pytest.mark.asyncio
    async def test_knowledge_base_default_limit(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_search_response([]))

        assert await _client(handler).search_knowledge_base("etcd", limit=0) == []
        assert bodies[0]["rows"] == 10

    @pytest.mark.asyncio
    async def test_knowledge_base_malformed_response(self):
        client = _client(lambda request: httpx.Response(200, json=["not", "a", "dict"]))

        with pytest.raises(CaseServiceError, match="unexpected response shape"):
            await client.search_knowledge_base("etcd")

    @pytest.mark.asyncio
    async def test_search_cases_includes_closed(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            docs = [{"case_number": "01234567", "case_summary": "etcd leader changes"}]
            return httpx.Response(200, json=_search_response(docs))

        results = await _client(handler).search_cases("etcd", limit=3)

        assert [(r.type, r.id, r.title) for r in results] == [
            ("case", "01234567", "etcd leader changes")
        ]
        assert bodies[0]["q"] == "etcd"
        assert bodies[0]["rows"] == 3
        assert "fq=" not in bodies[0]["expression"]

    @pytest.mark.asyncio
    async def test_list_accounts_pages_all_cases(self):
        all_docs = [
            {"case_number": "01000001", "case_accountNumber": "540155",
             "case_accountName": "Example Corp"},
            {"case_number": "01000002", "case_accountNumber": "123456"},
            {"case_number": "01000003"},
            {"case_number": "01000004", "case_accountNumber": "540155"},
        ]

        def handler(request):
            body = json.loads(request.content)
            start, rows = body["start"], body["rows"]
            return httpx.Response(
                200, json=_search_response(all_docs[start:start + rows], num_found=4, start=start)
            )

        accounts = await _client(handler).list_accounts(page_size=2)

        assert [(a.number, a.name) for a in accounts] == [
            ("123456", ""),
            ("540155", "Example Corp"),
        ]
