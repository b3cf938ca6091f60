"""Interactive core: detail fetching, list paging and the browser loop."""

from casedesk.core.detail_controller import DetailFetchController
from casedesk.core.events import (
    DebounceElapsed,
    DetailLoaded,
    Event,
    EventBus,
    EventKind,
    ExportFinished,
    ExportProgressed,
    PageLoaded,
    StatusLevel,
    StatusPosted,
)
from casedesk.core.list_loader import PaginatedListLoader, SortField
from casedesk.core.service import (
    collect_accounts,
    collect_case_numbers,
    fetch_case_bundle,
    find_cases,
)
from casedesk.core.status import StatusLine, StatusMessage


# Browser drives the export engine, which itself depends on this package
def __getattr__(name):
    """Lazy import for Browser to avoid circular import."""
    if name == "Browser":
        from casedesk.core.browser import Browser
        return Browser
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "Browser",
    "DetailFetchController",
    "DebounceElapsed",
    "DetailLoaded",
    "Event",
    "EventBus",
    "EventKind",
    "ExportFinished",
    "ExportProgressed",
    "PageLoaded",
    "StatusLevel",
    "StatusPosted",
    "PaginatedListLoader",
    "SortField",
    "collect_accounts",
    "collect_case_numbers",
    "fetch_case_bundle",
    "find_cases",
    "StatusLine",
    "StatusMessage",
]
