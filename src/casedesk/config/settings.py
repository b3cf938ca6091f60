"""Configuration for casedesk.

Settings are read from ``config.yaml`` in the casedesk config directory:
- $XDG_CONFIG_HOME/casedesk when XDG_CONFIG_HOME is set
- ~/.config/casedesk otherwise

A missing file means defaults. Environment variables override the file:
    CASEDESK_BASE_URL: Case REST API base URL
    CASEDESK_SEARCH_URL: Case search service base URL
    CASEDESK_TIMEOUT: Request timeout in seconds
    CASEDESK_EXPORT_CONCURRENCY: Export parallelism
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from casedesk.exceptions import ConfigError
from casedesk.models.case import CaseFilter
from casedesk.models.export import ExportOptions

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"


class ApiSettings(BaseModel):
    base_url: str = "https://api.access.redhat.com"
    search_url: str = "https://access.redhat.com"
    timeout: float = Field(default=30.0, gt=0, description="Interactive call deadline (seconds)")


class UISettings(BaseModel):
    page_size: int = Field(default=100, ge=1)
    debounce_ms: int = Field(default=500, ge=0)
    status_seconds: float = Field(default=5.0, gt=0, description="Lifetime of status messages")


class ExportSettings(BaseModel):
    output_dir: str = "./exports"
    attachments_dir: str = "attachments"
    concurrency: int = 4
    progress_buffer: int = Field(default=64, ge=1)


class DefaultsSettings(BaseModel):
    account_number: str = ""
    group_number: str = ""


class FilterPreset(BaseModel):
    """A saved filter."""

    name: str
    accounts: List[str] = Field(default_factory=list)
    status: List[str] = Field(default_factory=list)
    severity: List[str] = Field(default_factory=list)
    products: List[str] = Field(default_factory=list)
    keyword: str = ""

    def to_filter(self) -> CaseFilter:
        return CaseFilter(
            accounts=self.accounts,
            status=self.status,
            severity=self.severity,
            products=self.products,
            keyword=self.keyword,
        )


class Vocabulary(BaseModel):
    """Status and severity values understood by the case service.

    These are conventions of the remote service, kept as configuration so
    they can be corrected without a code change. ``status_aliases`` maps a
    short user-facing word to the service's status strings.
    """

    statuses: List[str] = Field(
        default_factory=lambda: ["Open", "Waiting on Red Hat", "Waiting on Customer", "Closed"]
    )
    severities: List[str] = Field(
        default_factory=lambda: ["1 (Urgent)", "2 (High)", "3 (Normal)", "4 (Low)"]
    )
    closed_statuses: List[str] = Field(default_factory=lambda: ["Closed"])
    status_aliases: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            "open": ["Open", "Waiting on Red Hat", "Waiting on Customer"],
            "closed": ["Closed"],
        }
    )

    def expand_statuses(self, values: List[str]) -> List[str]:
        """Replace aliases with the statuses they stand for, keeping order."""
        aliases = {key.lower(): targets for key, targets in self.status_aliases.items()}
        expanded: List[str] = []
        for value in values:
            for status in aliases.get(value.lower(), [value]):
                if status not in expanded:
                    expanded.append(status)
        return expanded

    def expand_severities(self, values: List[str]) -> List[str]:
        """Map shorthand like "1" or "urgent" to the full severity string."""
        expanded: List[str] = []
        for value in values:
            needle = value.strip().lower()
            match = next(
                (s for s in self.severities if s.lower() == needle or s.lower().startswith(needle)
                 or f"({needle})" in s.lower()),
                value,
            )
            if match not in expanded:
                expanded.append(match)
        return expanded


class Settings(BaseModel):
    """Application configuration."""

    api: ApiSettings = Field(default_factory=ApiSettings)
    ui: UISettings = Field(default_factory=UISettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    defaults: DefaultsSettings = Field(default_factory=DefaultsSettings)
    presets: Dict[str, FilterPreset] = Field(default_factory=dict)
    vocabulary: Vocabulary = Field(default_factory=Vocabulary)

    def export_options(self, **overrides: Any) -> ExportOptions:
        """Build export options from the configured defaults."""
        values: Dict[str, Any] = {
            "output_dir": Path(self.export.output_dir),
            "attachments_dir": self.export.attachments_dir,
            "concurrency": self.export.concurrency,
            "progress_buffer": self.export.progress_buffer,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ExportOptions(**values)

    def with_defaults(self, case_filter: Optional[CaseFilter]) -> CaseFilter:
        """Apply default account/group and vocabulary expansion to a filter."""
        case_filter = case_filter or CaseFilter()
        updates: Dict[str, Any] = {
            "status": self.vocabulary.expand_statuses(case_filter.status),
            "severity": self.vocabulary.expand_severities(case_filter.severity),
        }
        if not case_filter.accounts and self.defaults.account_number:
            updates["accounts"] = [self.defaults.account_number]
        if not case_filter.group_number and self.defaults.group_number:
            updates["group_number"] = self.defaults.group_number
        return case_filter.model_copy(update=updates)


def default_config_dir() -> Path:
    """Return the default configuration directory."""
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "casedesk"
    return Path.home() / ".config" / "casedesk"


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    api = data.setdefault("api", {})
    export = data.setdefault("export", {})

    if os.getenv("CASEDESK_BASE_URL"):
        api["base_url"] = os.environ["CASEDESK_BASE_URL"]
    if os.getenv("CASEDESK_SEARCH_URL"):
        api["search_url"] = os.environ["CASEDESK_SEARCH_URL"]

    timeout = os.getenv("CASEDESK_TIMEOUT")
    if timeout:
        try:
            api["timeout"] = float(timeout)
        except ValueError:
            logger.warning(f"Invalid CASEDESK_TIMEOUT: {timeout}")

    concurrency = os.getenv("CASEDESK_EXPORT_CONCURRENCY")
    if concurrency:
        try:
            export["concurrency"] = int(concurrency)
        except ValueError:
            logger.warning(f"Invalid CASEDESK_EXPORT_CONCURRENCY: {concurrency}")


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from YAML, then apply environment overrides.

    Args:
        path: Config file (default: <default_config_dir()>/config.yaml)

    Returns:
        Settings (defaults when the file does not exist)

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    path = Path(path) if path else default_config_dir() / CONFIG_FILENAME

    data: Dict[str, Any] = {}
    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"failed to read config {path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"failed to parse config {path}: top level must be a mapping")
        data = loaded or {}
    else:
        logger.debug(f"No config file at {path}, using defaults")

    _apply_env_overrides(data)

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}: {e}") from e


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    """Write settings as YAML, creating the config directory if needed."""
    path = Path(path) if path else default_config_dir() / CONFIG_FILENAME
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            yaml.safe_dump(settings.model_dump(mode="json"), sort_keys=False),
            encoding="utf-8",
        )
    except OSError as e:
        raise ConfigError(f"failed to write config {path}: {e}") from e
    return path
