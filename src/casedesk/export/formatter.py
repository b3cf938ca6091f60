"""Markdown rendering of case bundles.

Documents are produced from a template with ``{{variable}}`` placeholders.
The default template renders a metadata table, the summary, the
description (HTML converted to Markdown), the conversation, an attachments
table and an export footer. A custom template may use any of
``TEMPLATE_VARIABLES``; an unknown placeholder is rejected when the
formatter is built.
"""

import html
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from casedesk.exceptions import FormatterError
from casedesk.models.case import Attachment, CaseBundle, Comment
from casedesk.models.common import utc_now
from casedesk.models.export import ExportOptions

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")

DOCUMENT_SEPARATOR = "\n\n---\n\n"

TEMPLATE_VARIABLES = frozenset(
    {
        "case_number",
        "summary",
        "status",
        "severity",
        "product",
        "version",
        "type",
        "created",
        "last_updated",
        "closed",
        "closed_row",
        "owner",
        "contact",
        "account",
        "description",
        "comments",
        "comment_count",
        "attachments",
        "attachment_count",
        "exported_at",
    }
)

DEFAULT_TEMPLATE = """# Case {{case_number}}: {{summary}}

## Metadata

| Field | Value |
|-------|-------|
| Case Number | {{case_number}} |
| Status | {{status}} |
| Severity | {{severity}} |
| Product | {{product}} |
| Type | {{type}} |
| Created | {{created}} |
| Last Updated | {{last_updated}} |
{{closed_row}}| Owner | {{owner}} |
| Contact | {{contact}} |
| Account | {{account}} |

## Summary

{{summary}}

## Description

{{description}}

## Conversation

{{comments}}
{{attachments}}---
*Exported by casedesk on {{exported_at}}*
"""

_HTML_REPLACEMENTS = [
    (r"<br\s*/?>", "\n"),
    (r"<p(\s[^>]*)?>", "\n"),
    (r"</p>", "\n"),
    (r"<(strong|b)>", "**"),
    (r"</(strong|b)>", "**"),
    (r"<(em|i)>", "*"),
    (r"</(em|i)>", "*"),
    (r"<code>", "`"),
    (r"</code>", "`"),
    (r"<pre>", "\n```\n"),
    (r"</pre>", "\n```\n"),
    (r"<li>", "\n- "),
    (r"</li>", ""),
    (r"</?(ul|ol)>", "\n"),
    (r"<h1>", "\n# "),
    (r"<h2>", "\n## "),
    (r"<h3>", "\n### "),
    (r"</h[1-3]>", "\n"),
    (r"<blockquote>", "\n> "),
    (r"</blockquote>", "\n"),
    (r'<a\s+href="([^"]+)"[^>]*>([^<]+)</a>', r"[\2](\1)"),
]
_HTML_PATTERNS = [(re.compile(p, re.IGNORECASE), r) for p, r in _HTML_REPLACEMENTS]
_TAG_PATTERN = re.compile(r"<[^>]+>")
_BLANK_LINES_PATTERN = re.compile(r"\n{3,}")


def clean_html(text: str) -> str:
    """Convert the HTML the service stores into readable Markdown."""
    if not text:
        return ""
    for pattern, replacement in _HTML_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _TAG_PATTERN.sub("", text)
    text = html.unescape(text)
    text = _BLANK_LINES_PATTERN.sub("\n\n", text)
    return text.strip()


def format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_size(size: int) -> str:
    """Human-readable byte size (1024 based)."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    value = float(size)
    for prefix in "KMGTPE":
        value /= unit
        if value < unit or prefix == "E":
            return f"{value:.1f} {prefix}B"
    return f"{size} B"


def truncate_uuid(uuid: str) -> str:
    if len(uuid) > 13:
        return uuid[:8] + "..."
    return uuid


def _with_detail(value: str, detail: str) -> str:
    if value and detail:
        return f"{value} ({detail})"
    return value or detail


def render_template(template: str, variables: Dict[str, str]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names render empty."""

    def replace_var(match: re.Match) -> str:
        return variables.get(match.group(1), "")

    return VARIABLE_PATTERN.sub(replace_var, template)


class MarkdownFormatter:
    """Renders a CaseBundle as a Markdown document.

    Pure and synchronous: the same bundle and clock always produce the same
    text.
    """

    def __init__(
        self,
        template: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize formatter.

        Args:
            template: Custom template text (default: DEFAULT_TEMPLATE)
            clock: Source of the export timestamp

        Raises:
            FormatterError: If the template uses an unknown placeholder
        """
        self.template = template if template is not None else DEFAULT_TEMPLATE
        self.clock = clock

        unknown = sorted(set(VARIABLE_PATTERN.findall(self.template)) - TEMPLATE_VARIABLES)
        if unknown:
            raise FormatterError(f"unknown template variables: {', '.join(unknown)}")

    @classmethod
    def from_file(cls, path: Path, **kwargs) -> "MarkdownFormatter":
        try:
            template = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise FormatterError(f"failed to read template {path}: {e}") from e
        logger.info(f"Using custom template {path}")
        return cls(template=template, **kwargs)

    @classmethod
    def from_options(cls, options: ExportOptions) -> "MarkdownFormatter":
        if options.template_text is not None:
            return cls(template=options.template_text)
        if options.template_path is not None:
            return cls.from_file(options.template_path)
        return cls()

    def format_case(self, bundle: CaseBundle) -> str:
        return render_template(self.template, self.variables(bundle))

    def format_cases(self, bundles: Sequence[CaseBundle]) -> str:
        """Render several bundles into one document, in the given order."""
        return DOCUMENT_SEPARATOR.join(self.format_case(bundle) for bundle in bundles)

    def variables(self, bundle: CaseBundle) -> Dict[str, str]:
        """Template variables for one bundle."""
        case = bundle.case
        closed = format_time(case.closed_date) if case.closed_date else ""
        product = f"{case.product} {case.version}".strip()

        return {
            "case_number": case.case_number,
            "summary": case.summary,
            "status": case.status,
            "severity": case.severity,
            "product": product,
            "version": case.version,
            "type": case.type,
            "created": format_time(case.created_date),
            "last_updated": format_time(case.last_modified),
            "closed": closed,
            "closed_row": f"| Closed | {closed} |\n" if closed else "",
            "owner": case.owner,
            "contact": _with_detail(case.contact_name, case.contact_email),
            "account": _with_detail(case.account_name, case.account_number),
            "description": clean_html(case.description),
            "comments": self._render_comments(bundle.comments, bundle.comments_error),
            "comment_count": str(len(bundle.comments)),
            "attachments": self._render_attachments(
                bundle.attachments, bundle.attachments_error
            ),
            "attachment_count": str(len(bundle.attachments)),
            "exported_at": format_time(self.clock()),
        }

    def _render_comments(self, comments: List[Comment], error: Optional[str]) -> str:
        if error:
            return f"*Comments unavailable: {error}*\n"

        parts = []
        for number, comment in enumerate(comments, start=1):
            author = comment.author
            if comment.author_email:
                author += f" ({comment.author_email})"
            parts.append(
                f"### Comment {number}\n"
                f"**From:** {author}\n"
                f"**Date:** {format_time(comment.created_date)}\n"
                f"**Type:** {'Public' if comment.is_public else 'Internal'}\n"
                f"\n{clean_html(comment.body)}\n"
                f"\n---\n\n"
            )
        return "".join(parts)

    def _render_attachments(self, attachments: List[Attachment], error: Optional[str]) -> str:
        if error:
            return f"## Attachments\n\n*Attachments unavailable: {error}*\n\n"
        if not attachments:
            return ""

        lines = [
            "## Attachments",
            "",
            "| Filename | Size | UUID | Uploaded |",
            "|----------|------|------|----------|",
        ]
        for attachment in attachments:
            lines.append(
                f"| {attachment.filename} | {format_size(attachment.byte_size)} "
                f"| {truncate_uuid(attachment.uuid)} | {format_time(attachment.created_date)} |"
            )
        return "\n".join(lines) + "\n\n"
