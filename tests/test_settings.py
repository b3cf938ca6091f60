"""Tests for configuration loading."""

from pathlib import Path

import pytest

from casedesk.config.settings import (
    Settings,
    Vocabulary,
    default_config_dir,
    load_settings,
    save_settings,
)
from casedesk.exceptions import ConfigError
from casedesk.models.case import CaseFilter

SAMPLE_CONFIG = """
api:
  base_url: https://cases.example.com
  timeout: 12
ui:
  page_size: 50
export:
  output_dir: /tmp/case-exports
  concurrency: 8
defaults:
  account_number: "540155"
presets:
  urgent:
    name: Urgent open
    status: [open]
    severity: ["1"]
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CASEDESK_BASE_URL",
        "CASEDESK_SEARCH_URL",
        "CASEDESK_TIMEOUT",
        "CASEDESK_EXPORT_CONCURRENCY",
    ):
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "config.yaml")

        assert settings == Settings()
        assert settings.ui.page_size == 100
        assert settings.export.concurrency == 4

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(SAMPLE_CONFIG, encoding="utf-8")

        settings = load_settings(path)

        assert settings.api.base_url == "https://cases.example.com"
        assert settings.api.timeout == 12.0
        assert settings.ui.page_size == 50
        assert settings.defaults.account_number == "540155"
        assert settings.presets["urgent"].status == ["open"]

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(SAMPLE_CONFIG, encoding="utf-8")
        monkeypatch.setenv("CASEDESK_BASE_URL", "https://staging.example.com")
        monkeypatch.setenv("CASEDESK_EXPORT_CONCURRENCY", "2")

        settings = load_settings(path)

        assert settings.api.base_url == "https://staging.example.com"
        assert settings.export.concurrency == 2

    def test_invalid_env_number_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CASEDESK_TIMEOUT", "soon")

        settings = load_settings(tmp_path / "config.yaml")

        assert settings.api.timeout == 30.0

    def test_default_location_follows_xdg(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        assert default_config_dir() == tmp_path / "casedesk"

    @pytest.mark.parametrize(
        "content",
        [
            "api: [unclosed",
            "- just\n- a list\n",
            "ui:\n  page_size: 0\n",
        ],
    )
    def test_bad_files_raise_config_error(self, tmp_path, content):
        path = tmp_path / "config.yaml"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(ConfigError):
            load_settings(path)

    def test_save_then_load(self, tmp_path):
        settings = Settings.model_validate({"ui": {"debounce_ms": 250}})
        path = save_settings(settings, tmp_path / "nested" / "config.yaml")

        assert load_settings(path).ui.debounce_ms == 250


class TestVocabulary:
    def test_status_alias_expands(self):
        vocabulary = Vocabulary()

        assert vocabulary.expand_statuses(["open", "Closed"]) == [
            "Open",
            "Waiting on Red Hat",
            "Waiting on Customer",
            "Closed",
        ]

    def test_unknown_status_passes_through(self):
        assert Vocabulary().expand_statuses(["Escalated"]) == ["Escalated"]

    def test_severity_shorthand(self):
        vocabulary = Vocabulary()

        assert vocabulary.expand_severities(["1", "high", "4 (Low)"]) == [
            "1 (Urgent)",
            "2 (High)",
            "4 (Low)",
        ]


class TestSettingsHelpers:
    def test_with_defaults_fills_account_and_expands(self):
        settings = Settings.model_validate({"defaults": {"account_number": "540155"}})

        case_filter = settings.with_defaults(CaseFilter(status=["open"], severity=["2"]))

        assert case_filter.accounts == ["540155"]
        assert "Waiting on Customer" in case_filter.status
        assert case_filter.severity == ["2 (High)"]

    def test_with_defaults_keeps_explicit_account(self):
        settings = Settings.model_validate({"defaults": {"account_number": "540155"}})

        assert settings.with_defaults(CaseFilter(accounts=["1"])).accounts == ["1"]

    def test_export_options_overrides(self):
        settings = Settings.model_validate({"export": {"output_dir": "out", "concurrency": 6}})

        options = settings.export_options(combined=True, concurrency=None)

        assert options.output_dir == Path("out")
        assert options.concurrency == 6
        assert options.combined is True

    def test_preset_to_filter(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(SAMPLE_CONFIG, encoding="utf-8")

        case_filter = load_settings(path).presets["urgent"].to_filter()

        assert case_filter.status == ["open"]
        assert case_filter.severity == ["1"]
