"""casedesk

Browse a remote support-case service, drill into case detail and
bulk-export cases to Markdown.
"""

__version__ = "0.1.0"

from casedesk.exceptions import (
    CaseDeskError,
    CaseNotFoundError,
    CaseServiceError,
    CaseServiceTimeout,
    ConfigError,
    ExportError,
    FormatterError,
    UnauthorizedError,
)
from casedesk.models import (
    Attachment,
    Case,
    CaseBundle,
    CaseFilter,
    Comment,
    ExportOptions,
    ExportResult,
    ListPage,
    Manifest,
    ProgressEvent,
)


# Lazy import for the HTTP client and the export engine, which pull in the
# heavier dependencies
def __getattr__(name):
    """Lazy import for CaseServiceClient and CaseExporter."""
    if name == "CaseServiceClient":
        from casedesk.clients import CaseServiceClient
        return CaseServiceClient
    if name == "CaseExporter":
        from casedesk.export import CaseExporter
        return CaseExporter
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    # Errors
    "CaseDeskError", "CaseNotFoundError", "CaseServiceError", "CaseServiceTimeout",
    "ConfigError", "ExportError", "FormatterError", "UnauthorizedError",
    # Models
    "Attachment", "Case", "CaseBundle", "CaseFilter", "Comment", "ExportOptions",
    "ExportResult", "ListPage", "Manifest", "ProgressEvent",
    # Lazy loaded
    "CaseServiceClient", "CaseExporter",
]
