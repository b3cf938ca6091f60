"""Bulk export of cases to Markdown documents."""

from casedesk.export.engine import CaseExporter, manifest_filters
from casedesk.export.formatter import (
    DEFAULT_TEMPLATE,
    DOCUMENT_SEPARATOR,
    MarkdownFormatter,
    clean_html,
    format_size,
    format_time,
    truncate_uuid,
)
from casedesk.export.progress import CancellationToken, ProgressChannel

__all__ = [
    "CaseExporter",
    "manifest_filters",
    "DEFAULT_TEMPLATE",
    "DOCUMENT_SEPARATOR",
    "MarkdownFormatter",
    "clean_html",
    "format_size",
    "format_time",
    "truncate_uuid",
    "CancellationToken",
    "ProgressChannel",
]
