from __future__ import annotations

import os
from pathlib import Path

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field

ENV_FILE = find_dotenv(usecwd=True)

HOME_ENV_VAR = "FLATTEN_TREE_HOME"
API_URL_ENV_VAR = "FLATTEN_TREE_API_URL"

DEFAULT_API_URL = "https://www.toptal.com/developers/gitignore/api"
DEFAULT_SKIP_FOLDERS = [".git", "node_modules", "target", "dist", "build"]
DEFAULT_SKIP_EXTENSIONS = ["exe", "dll", "so", "dylib", "bin", "jar", "apk", "ipa", "msi", "class", "pyc"]
DEFAULT_MAX_FILE_SIZE = 104_857_600


def env_value(name: str) -> str:
    """Look a variable up in the process environment, then in the project `.env` file.

    Args:
        name (str): the variable name

    Returns:
        str: the value, or an empty string when unset
    """
    value = os.environ.get(name)
    if value:
        return value
    if not ENV_FILE:
        return ""
    return dotenv_values(ENV_FILE).get(name) or ""


def default_cache_dir() -> Path:
    """Per-user directory holding the persisted template cache (`~/.flatten` by default)."""
    override = env_value(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".flatten"


def default_api_url() -> str:
    """Base URL of the gitignore template API."""
    return env_value(API_URL_ENV_VAR) or DEFAULT_API_URL


class Settings(BaseModel):
    """Run inputs for the flatten_tree module."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    folders: list[Path] = Field(default_factory=list, description="Base folders to process.")
    skip_folders: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SKIP_FOLDERS),
        description="Folder names to skip.",
    )
    skip_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SKIP_EXTENSIONS),
        description="File extensions to skip.",
    )
    output: Path = Field(default=Path("codebase.md"), description="Output file.")
    show_skipped: bool = Field(default=False, description="Show skipped folders in the structure.")
    threads: int = Field(default=0, ge=0, description="Worker threads (0 = all CPUs).")
    max_file_size: int = Field(
        default=DEFAULT_MAX_FILE_SIZE,
        ge=0,
        description="Files above this size are replaced by a placeholder (0 = no limit).",
    )
    auto_detect: bool = Field(default=False, description="Enable templates detected in the folders.")
    include_hidden: bool = Field(default=False, description="Include hidden files and folders.")
    max_depth: int = Field(default=0, ge=0, description="Maximum walk depth (0 = no limit).")
    show_stats: bool = Field(default=False, description="Print statistics after the run.")
    dry_run: bool = Field(default=False, description="List what would be processed, write nothing.")

    list_templates: bool = Field(default=False, description="List available templates.")
    show_enabled: bool = Field(default=False, description="Show enabled templates.")
    enable_template: list[str] = Field(default_factory=list, description="Templates to enable.")
    disable_template: list[str] = Field(default_factory=list, description="Templates to disable.")
    force_update: bool = Field(default=False, description="Refresh templates from the API.")

    log_file: str = Field(default="", description="Log file path.")
    cache_dir: Path = Field(default_factory=default_cache_dir, description="Template cache directory.")
    api_url: str = Field(default_factory=default_api_url, description="Template API base URL.")

    @property
    def template_only(self) -> bool:
        """Whether the invocation only manages templates (no folder to flatten)."""
        managing = (
            self.list_templates
            or self.show_enabled
            or self.force_update
            or bool(self.enable_template)
            or bool(self.disable_template)
        )
        return managing and not self.folders
