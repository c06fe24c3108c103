from __future__ import annotations

import os
from pathlib import Path

from dotenv import find_dotenv
from pydantic import BaseModel, ConfigDict, Field

from context_bundler.config import DEFAULT_EXCLUDE_FOLDERS, DEFAULT_FILE_TYPES, ExportFormat
from context_bundler.tokens import DEFAULT_ENCODING
from context_bundler.workspace import DEFAULT_MAX_TOKENS

ENV_FILE = find_dotenv(usecwd=True)


class Settings(BaseModel):
    """Configuration settings for the context_bundler command line."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    folder: Path | None = Field(default=None, description="Local folder to bundle.")
    github: str = Field(default="", description="GitHub repository (owner/repo).")
    branch: str = Field(default="", description="Branch; the default branch when empty.")
    list_branches: bool = Field(default=False, description="Print the repository branches instead of exporting.")
    github_token: str = Field(
        default_factory=lambda: os.environ.get("GITHUB_TOKEN", ""),
        description="GitHub token, read from GITHUB_TOKEN when not given.",
    )
    project: str = Field(default="", description="Project id for presets and remembered sources.")

    output: Path | None = Field(default=None, description="Output file; stdout when empty.")
    format: ExportFormat = Field(default=ExportFormat.CODE, description="Export format.")
    minify: bool = Field(default=False, description="Minify file contents in the code dump.")
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0, description="Token budget.")

    select: list[str] = Field(default_factory=list, description="Select globs; everything when empty.")
    preset: str = Field(default="", description="Apply a saved preset.")
    save_preset: str = Field(default="", description="Save the final selection under this name.")
    preset_file: Path | None = Field(default=None, description="YAML store for presets and folders.")
    suggestions: Path | None = Field(default=None, description="File holding a JSON list of paths to select.")

    exclude_folders: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_FOLDERS),
        description="Excluded folder names.",
    )
    file_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FILE_TYPES),
        description="Allowed file types (.ext or exact name, * for all).",
    )

    encoding: str = Field(default=DEFAULT_ENCODING, description="tiktoken encoding.")
    no_tokenizer: bool = Field(default=False, description="Use the chars/4 heuristic only.")
    log_file: str = Field(default="", description="Log file path.")
    log_level: str = Field(default="", description="Log level name; empty for the sink default.")
