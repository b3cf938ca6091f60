"""Export data models.

Key Models:
- ExportOptions: shared configuration of one export run
- TaskState: lifecycle of one case export task
- Manifest / ManifestEntry / ManifestFilters: persisted record of a run
- ExportFailure: one failed case
- ProgressEvent: transient progress notification
- ExportResult: what a run hands back to its caller
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from casedesk.models.common import utc_now

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "export-manifest.json"
COMBINED_FILENAME = "all-cases.md"
CASE_FILENAME = "case.md"


class ExportOptions(BaseModel):
    """Configuration shared by every task of an export run."""

    output_dir: Path = Field(default=Path("./exports"), description="Root of all export output")
    output_file: Optional[Path] = Field(
        default=None, description="Combined document path (defaults to <output_dir>/all-cases.md)"
    )
    include_attachments: bool = Field(default=False)
    attachments_dir: str = Field(default="attachments", description="Per-case attachments subdirectory")
    combined: bool = Field(default=False, description="Write all cases into one document")
    concurrency: int = Field(default=4, description="Maximum simultaneous case tasks")
    template_path: Optional[Path] = Field(default=None, description="Custom document template file")
    template_text: Optional[str] = Field(default=None, description="Custom document template")
    request_timeout: Optional[float] = Field(
        default=None, description="Per-call deadline in seconds; None waits until cancelled"
    )
    progress_buffer: int = Field(default=64, ge=1, description="Progress channel capacity")

    @field_validator("concurrency")
    @classmethod
    def clamp_concurrency(cls, value: int) -> int:
        """Parallelism below 1 would never start a task."""
        if value < 1:
            logger.warning(f"Export concurrency {value} is invalid, using 1")
            return 1
        return value

    @property
    def combined_path(self) -> Path:
        return self.output_file or self.output_dir / COMBINED_FILENAME

    @property
    def manifest_path(self) -> Path:
        return self.output_dir / MANIFEST_FILENAME


class TaskState(str, Enum):
    """Export task lifecycle.

    PENDING → FETCHING → FORMATTING → WRITING → DONE
    Any active state → FAILED (remaining steps skipped)
    PENDING or any active state → CANCELLED (run cancelled)
    """

    PENDING = "pending"
    FETCHING = "fetching"
    FORMATTING = "formatting"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (TaskState.FETCHING, TaskState.FORMATTING, TaskState.WRITING)

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.DONE, TaskState.FAILED, TaskState.CANCELLED)


class ManifestEntry(BaseModel):
    """One successfully exported case."""

    case_number: str
    summary: str = ""
    file: str = Field(description="Document path relative to the output directory")
    attachment_count: int = Field(default=0, description="Attachments listed on the case")
    attachments_downloaded: int = Field(default=0)


class ManifestFilters(BaseModel):
    """Filters that produced the exported set."""

    status: List[str] = Field(default_factory=list)
    severity: List[str] = Field(default_factory=list)
    products: List[str] = Field(default_factory=list)
    keyword: str = ""
    since: Optional[str] = None
    until: Optional[str] = None


class ExportFailure(BaseModel):
    """One case that could not be exported."""

    case_number: str
    step: TaskState = Field(description="State the task was in when it failed")
    error: str


class Manifest(BaseModel):
    """Summary record of one export run.

    Written once per run to ``export-manifest.json`` in the output
    directory; a later run overwrites it.
    """

    exported_at: datetime = Field(default_factory=utc_now)
    total_cases: int = 0
    filters_applied: Optional[ManifestFilters] = None
    cases: List[ManifestEntry] = Field(default_factory=list)
    failures: List[ExportFailure] = Field(default_factory=list)
    cancelled: List[str] = Field(default_factory=list)

    def case_numbers(self) -> List[str]:
        return [entry.case_number for entry in self.cases]

    def find_case(self, case_number: str) -> Optional[ManifestEntry]:
        for entry in self.cases:
            if entry.case_number == case_number:
                return entry
        return None

    def save(self, path: Path) -> None:
        """Write the manifest as indented JSON, replacing any existing file."""
        Path(path).write_text(self.model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))


@dataclass(frozen=True)
class ProgressEvent:
    """Progress of an export run. Never persisted."""

    total_tasks: int
    completed_tasks: int
    current_task: str = ""
    current_step: str = ""

    @property
    def fraction(self) -> float:
        if self.total_tasks == 0:
            return 1.0
        return self.completed_tasks / self.total_tasks


@dataclass
class ExportResult:
    """Outcome of an export run.

    A run with failures is still a result, not an exception: ``manifest``
    covers everything that succeeded and ``failures`` everything that did not.
    """

    manifest: Manifest
    failures: List[ExportFailure] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    manifest_path: Optional[Path] = None
    combined_path: Optional[Path] = None

    @property
    def total(self) -> int:
        return self.manifest.total_cases

    @property
    def succeeded(self) -> int:
        return len(self.manifest.cases)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def was_cancelled(self) -> bool:
        return bool(self.cancelled)

    @property
    def error(self) -> Optional[str]:
        """Aggregate error message, or None when nothing failed."""
        if not self.failures:
            return None
        first = self.failures[0]
        return (
            f"export completed with {self.failed_count} errors: "
            f"case {first.case_number}: {first.error}"
        )

    def summary(self) -> str:
        """One-line human summary of the run."""
        text = f"exported {self.succeeded} of {self.total}"
        if self.failed_count:
            text += f" ({self.failed_count} failed)"
        if self.cancelled:
            text += f" ({len(self.cancelled)} cancelled)"
        if self.manifest_path:
            text += "; see manifest"
        return text
