"""Unit tests for LabelerSettings."""

import os

import pytest
from pydantic import ValidationError

from src.labeler.config import LabelerSettings, get_settings
from src.labeler.paging.retry import DEFAULT_RETRY_SCHEDULE


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove LABELER_ variables inherited from the environment."""
    for name in list(os.environ):
        if name.startswith("LABELER_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LABELER_GITHUB_TOKEN", "ghp_test")


class TestDefaults:
    def test_defaults(self):
        settings = LabelerSettings()

        assert settings.github_base_url == "https://api.github.com"
        assert settings.page_size == 100
        assert settings.page_limit == 1000
        assert settings.label_prefix == "area-"
        assert settings.threshold == 0.4
        assert settings.default_label is None
        assert settings.dry_run is False
        assert settings.retry_policy.schedule == DEFAULT_RETRY_SCHEDULE

    def test_token_required(self, monkeypatch):
        monkeypatch.delenv("LABELER_GITHUB_TOKEN")

        with pytest.raises(ValidationError):
            LabelerSettings()


class TestEnvironment:
    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("LABELER_THRESHOLD", "0.75")
        monkeypatch.setenv("LABELER_RETRIES", "1,2,3")
        monkeypatch.setenv("LABELER_DRY_RUN", "true")
        monkeypatch.setenv("LABELER_CANDIDATE_LABELS", "area-a, area-b,,")

        settings = LabelerSettings()

        assert settings.threshold == 0.75
        assert settings.retry_policy.schedule == (1.0, 2.0, 3.0)
        assert settings.dry_run is True
        assert settings.candidate_label_list == ["area-a", "area-b"]

    def test_overrides_take_precedence(self, monkeypatch):
        monkeypatch.setenv("LABELER_PAGE_LIMIT", "5")

        settings = get_settings(page_limit=2, label_prefix=None)

        assert settings.page_limit == 2
        assert settings.label_prefix == "area-"


class TestValidation:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("threshold", float("nan")),
            ("threshold", float("inf")),
            ("page_size", 0),
            ("page_size", 101),
            ("page_limit", -1),
            ("retries", "30,later"),
            ("retries", "30,-1"),
            ("label_prefix", " "),
            ("max_concurrency", 0),
            ("llm_url", "ftp://models"),
            ("log_level", "LOUD"),
            ("github_base_url", "api.github.com"),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            get_settings(**{field: value})

    def test_blank_default_label_is_none(self):
        assert get_settings(default_label="  ").default_label is None

    def test_log_level_normalized(self):
        assert get_settings(log_level="debug").log_level == "DEBUG"

    def test_zero_page_limit_allowed(self):
        assert get_settings(page_limit=0).page_limit == 0
