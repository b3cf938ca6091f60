"""
Data models for casedesk.

Case models mirror the remote case service; export models describe export
runs, their manifest and their progress.
"""

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
from casedesk.models.export import (
    ExportFailure,
    ExportOptions,
    ExportResult,
    Manifest,
    ManifestEntry,
    ManifestFilters,
    ProgressEvent,
    TaskState,
)
from casedesk.models.interfaces import AttachmentStream, CaseFormatter, CaseService

__all__ = [
    # Case
    "Attachment", "Case", "CaseBundle", "CaseFilter", "Comment", "ListPage",
    "Account", "SearchResult",
    # Export
    "ExportFailure", "ExportOptions", "ExportResult", "Manifest",
    "ManifestEntry", "ManifestFilters", "ProgressEvent", "TaskState",
    # Interfaces
    "AttachmentStream", "CaseFormatter", "CaseService",
]
