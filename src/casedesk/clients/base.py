"""Base HTTP client for the remote case service."""

import logging
from typing import Any, Dict, Optional

import httpx

from casedesk.auth.token_provider import TokenProvider
from casedesk.exceptions import (
    CaseNotFoundError,
    CaseServiceError,
    CaseServiceTimeout,
    UnauthorizedError,
)
from casedesk.utils.resilience import is_retry_attempt, unauthorized_retry

logger = logging.getLogger(__name__)


class BaseServiceClient:
    """Base class for authenticated HTTP clients of the case service.

    Every request carries a bearer token from the ``TokenProvider``. All
    ``httpx`` failures are converted into the ``CaseServiceError`` family so
    callers never depend on the transport library.

    Usage:
        class CaseServiceClient(BaseServiceClient):
            async def get_case(self, case_number: str) -> Case:
                response = await self._request(
                    "GET", self._url(f"/support/v1/cases/{case_number}"),
                    what=f"get case {case_number}",
                )
                return Case.model_validate(self._json(response, "case"))
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize service client.

        Args:
            base_url: Service base URL (e.g., https://api.example.com)
            timeout: Request timeout in seconds (default: 30.0)
            token_provider: Source of bearer tokens (None sends no Authorization header)
            transport: Optional httpx transport, used by tests to mock the service
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token_provider = token_provider
        self._transport = transport

        logger.info(f"Initialized {self.__class__.__name__} with base_url={self.base_url}")

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        """Generate request headers.

        Args:
            token: Bearer token for the Authorization header

        Returns:
            Headers dict
        """
        headers = {
            "Accept": "application/json",
        }

        if token:
            headers["Authorization"] = f"Bearer {token}"

        return headers

    def _get_client(self) -> httpx.AsyncClient:
        """Get HTTP client instance with configured timeout.

        Returns:
            Configured AsyncClient ready for use with async context manager
        """
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _get_token(self) -> Optional[str]:
        if self.token_provider is None:
            return None
        return await self.token_provider.get_token()

    async def _request(
        self,
        method: str,
        url: str,
        what: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> httpx.Response:
        """Send an authenticated request, replaying it once after a 401.

        Args:
            method: HTTP method
            url: Absolute URL
            what: Short description of the call, used in error messages
            params: Query parameters
            json: JSON request body

        Returns:
            Successful (2xx) response

        Raises:
            UnauthorizedError: Credentials rejected and could not be refreshed
            CaseNotFoundError: HTTP 404
            CaseServiceTimeout: Deadline exceeded
            CaseServiceError: Any other transport or HTTP failure
        """
        async for attempt in unauthorized_retry(self.token_provider):
            with attempt:
                if is_retry_attempt(attempt.retry_state):
                    await self.token_provider.invalidate_token()
                return await self._send(method, url, what, params=params, json=json)

    async def _send(
        self,
        method: str,
        url: str,
        what: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> httpx.Response:
        headers = self._headers(await self._get_token())
        logger.debug(f"{method} {url}")

        try:
            async with self._get_client() as client:
                response = await client.request(
                    method, url, params=params, json=json, headers=headers
                )
        except httpx.TimeoutException as e:
            raise CaseServiceTimeout(f"{what}: request timed out") from e
        except httpx.HTTPError as e:
            raise CaseServiceError(f"{what}: request failed: {e}") from e

        self._raise_for_status(response, what, include_body=True)
        return response

    def _raise_for_status(
        self, response: httpx.Response, what: str, include_body: bool = False
    ) -> None:
        """Convert an HTTP error status into a CaseServiceError."""
        status = response.status_code
        if status < 400:
            return

        detail = ""
        if include_body:
            detail = f": {response.text[:200]}"

        logger.debug(f"{what}: HTTP {status}{detail}")

        if status == 401:
            raise UnauthorizedError(f"{what}: unauthorized")
        if status == 404:
            raise CaseNotFoundError(f"{what}: not found")
        raise CaseServiceError(f"{what}: API error {status}{detail}", status_code=status)

    def _json(self, response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise CaseServiceError(f"{what}: failed to decode response: {e}") from e
