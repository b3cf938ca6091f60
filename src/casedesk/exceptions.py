"""Exception hierarchy for casedesk.

Remote failures are raised as ``CaseServiceError`` subclasses so callers can
tell a transient problem (retry later) from an authorization problem
(re-authenticate) without inspecting ``httpx`` internals.
"""

from typing import Optional


class CaseDeskError(Exception):
    """Base class for all casedesk errors."""


class CaseServiceError(CaseDeskError):
    """Transient failure talking to the remote case service.

    Attributes:
        status_code: HTTP status code when the server answered, else None
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CaseServiceTimeout(CaseServiceError):
    """A remote call exceeded its deadline."""


class UnauthorizedError(CaseServiceError):
    """The remote service rejected the credentials (HTTP 401)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=401)


class CaseNotFoundError(CaseServiceError):
    """The requested case does not exist (HTTP 404)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class FormatterError(CaseDeskError):
    """A case document could not be rendered."""


class ExportError(CaseDeskError):
    """Run-level export failure (output location unusable, listing failed)."""


class ConfigError(CaseDeskError):
    """Configuration file could not be read or parsed."""
