"""Configuration loading."""

from casedesk.config.settings import (
    FilterPreset,
    Settings,
    Vocabulary,
    default_config_dir,
    load_settings,
    save_settings,
)

__all__ = [
    "FilterPreset",
    "Settings",
    "Vocabulary",
    "default_config_dir",
    "load_settings",
    "save_settings",
]
