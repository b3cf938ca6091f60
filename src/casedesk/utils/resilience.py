"""Retry policies for casedesk.

The core never retries transient failures on its own: a failed fetch is
reported and the user decides. The one exception is an expired access
token, which is refreshed and the call replayed once, beneath the core.
"""

import logging
from typing import Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    retry_never,
    stop_after_attempt,
)

from casedesk.auth.token_provider import TokenProvider
from casedesk.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)


def is_retry_attempt(retry_state: RetryCallState) -> bool:
    """True for every attempt after the first."""
    return retry_state.attempt_number > 1


def unauthorized_retry(token_provider: Optional[TokenProvider]) -> AsyncRetrying:
    """Create the retry controller used around every authenticated request.

    A 401 is replayed once, and only when the token provider can fetch a new
    token; without a refresher the UnauthorizedError propagates immediately.

    Args:
        token_provider: Provider whose token is attached to requests

    Returns:
        An AsyncRetrying to iterate over (``async for attempt in ...``)

    Example:
        ```python
        async for attempt in unauthorized_retry(provider):
            with attempt:
                if is_retry_attempt(attempt.retry_state):
                    await provider.invalidate_token()
                return await send()
        ```
    """
    can_refresh = token_provider is not None and token_provider.can_refresh
    return AsyncRetrying(
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(UnauthorizedError) if can_refresh else retry_never,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
