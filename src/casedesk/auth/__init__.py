"""Authentication seam for the case service client."""

from casedesk.auth.token_provider import TokenProvider, TokenRefresher

__all__ = [
    "TokenProvider",
    "TokenRefresher",
]
