"""Access token provider with lazy refresh."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from casedesk.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

TokenRefresher = Callable[[], Awaitable[str]]


class TokenProvider:
    """Supplies bearer tokens to the case service client.

    Acquiring tokens (OAuth flows, credential storage) is not this class's
    job: callers hand it either a fixed token, a refresh callable, or both.

    This class handles:
    1. Caching the current token
    2. Fetching a new token through the refresher when none is cached
    3. Forgetting the token after the service rejects it (HTTP 401)
    4. Serializing concurrent refreshes so only one runs at a time

    Usage:
        async def refresh() -> str:
            return await my_oauth.exchange_refresh_token()

        provider = TokenProvider(refresher=refresh)
        token = await provider.get_token()
    """

    def __init__(
        self,
        token: Optional[str] = None,
        refresher: Optional[TokenRefresher] = None,
    ):
        """Initialize token provider.

        Args:
            token: Initial access token, if already known
            refresher: Async callable returning a fresh access token
        """
        self._token = token
        self._refresher = refresher
        self._lock = asyncio.Lock()

    @property
    def can_refresh(self) -> bool:
        """True if a rejected token can be replaced."""
        return self._refresher is not None

    async def get_token(self) -> Optional[str]:
        """Get current access token, refreshing it if none is cached.

        Returns:
            Access token, or None when no token and no refresher are configured

        Raises:
            UnauthorizedError: If the refresher fails
        """
        if self._token is None and self._refresher is not None:
            async with self._lock:
                # Double-check after acquiring lock (another task may have refreshed)
                if self._token is None:
                    await self._refresh_token()

        return self._token

    async def _refresh_token(self) -> None:
        logger.info("Refreshing access token")
        try:
            self._token = await self._refresher()
        except UnauthorizedError:
            raise
        except Exception as e:
            logger.error(f"Failed to refresh access token: {e}")
            raise UnauthorizedError(f"failed to refresh token: {e}") from e

    async def invalidate_token(self) -> None:
        """Force a refresh on the next get_token() call.

        Used after a 401 response (token expired or revoked).
        """
        async with self._lock:
            logger.info("Invalidating cached access token")
            self._token = None
