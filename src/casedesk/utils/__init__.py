"""Utility Functions"""

from casedesk.utils.resilience import (
    is_retry_attempt,
    unauthorized_retry,
)

__all__ = [
    "is_retry_attempt",
    "unauthorized_retry",
]
