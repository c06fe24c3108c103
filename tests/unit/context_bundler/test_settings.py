from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from context_bundler.config import DEFAULT_EXCLUDE_FOLDERS, ExportFormat
from context_bundler.settings import Settings
from context_bundler.workspace import DEFAULT_MAX_TOKENS


@pytest.mark.unit
def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)

    settings = Settings(folder=Path("proj"))

    assert settings.folder == Path("proj")
    assert settings.format is ExportFormat.CODE
    assert settings.max_tokens == DEFAULT_MAX_TOKENS
    assert settings.exclude_folders == list(DEFAULT_EXCLUDE_FOLDERS)
    assert settings.github_token == ""
    assert settings.minify is False


@pytest.mark.unit
def test_settings_reads_github_token_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")

    assert Settings(github="octo/demo").github_token == "ghp_test"
    assert Settings(github="octo/demo", github_token="explicit").github_token == "explicit"


@pytest.mark.unit
def test_settings_rejects_non_positive_budget() -> None:
    with pytest.raises(ValidationError):
        Settings(max_tokens=0)
