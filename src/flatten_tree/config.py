from __future__ import annotations

from enum import StrEnum, auto
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

SCHEMA_VERSION = 1
DEFAULT_CACHE_DURATION = 86_400  # 24 hours

CONFIG_FILE_NAME = "config.json"
TEMPLATES_FILE_NAME = "templates.json"

HIDDEN_PREFIX = "."
COMMENT_PREFIX = "#"
NEGATION_PREFIX = "!"
GLOB_METACHARS = frozenset("*?[]")


class TemplateCategory(StrEnum):
    """Display grouping used when listing templates."""

    LANGUAGES = "Languages"
    IDES = "IDEs"
    EDITORS = "Editors"
    PLATFORMS = "Platforms"
    OTHER = "Other"


TEMPLATE_CATEGORIES: dict[str, TemplateCategory] = {
    "c": TemplateCategory.LANGUAGES,
    "c++": TemplateCategory.LANGUAGES,
    "csharp": TemplateCategory.LANGUAGES,
    "dart": TemplateCategory.LANGUAGES,
    "elixir": TemplateCategory.LANGUAGES,
    "go": TemplateCategory.LANGUAGES,
    "haskell": TemplateCategory.LANGUAGES,
    "java": TemplateCategory.LANGUAGES,
    "kotlin": TemplateCategory.LANGUAGES,
    "node": TemplateCategory.LANGUAGES,
    "php": TemplateCategory.LANGUAGES,
    "python": TemplateCategory.LANGUAGES,
    "ruby": TemplateCategory.LANGUAGES,
    "rust": TemplateCategory.LANGUAGES,
    "scala": TemplateCategory.LANGUAGES,
    "swift": TemplateCategory.LANGUAGES,
    "clion": TemplateCategory.IDES,
    "eclipse": TemplateCategory.IDES,
    "intellij": TemplateCategory.IDES,
    "jetbrains": TemplateCategory.IDES,
    "netbeans": TemplateCategory.IDES,
    "pycharm": TemplateCategory.IDES,
    "visualstudio": TemplateCategory.IDES,
    "xcode": TemplateCategory.IDES,
    "emacs": TemplateCategory.EDITORS,
    "sublimetext": TemplateCategory.EDITORS,
    "vim": TemplateCategory.EDITORS,
    "visualstudiocode": TemplateCategory.EDITORS,
    "android": TemplateCategory.PLATFORMS,
    "angular": TemplateCategory.PLATFORMS,
    "composer": TemplateCategory.PLATFORMS,
    "django": TemplateCategory.PLATFORMS,
    "flutter": TemplateCategory.PLATFORMS,
    "gradle": TemplateCategory.PLATFORMS,
    "linux": TemplateCategory.PLATFORMS,
    "macos": TemplateCategory.PLATFORMS,
    "maven": TemplateCategory.PLATFORMS,
    "react": TemplateCategory.PLATFORMS,
    "terraform": TemplateCategory.PLATFORMS,
    "windows": TemplateCategory.PLATFORMS,
}

# Template key -> marker names relative to a project root. Wildcards are globbed.
PROJECT_MARKERS: dict[str, tuple[str, ...]] = {
    "rust": ("Cargo.toml",),
    "node": ("package.json", "node_modules"),
    "python": ("requirements.txt", "pyproject.toml", "setup.py", "__pycache__"),
    "maven": ("pom.xml",),
    "gradle": ("build.gradle", "build.gradle.kts", ".gradle"),
    "csharp": ("*.csproj", "*.sln"),
    "visualstudio": (".vs",),
    "go": ("go.mod",),
    "ruby": ("Gemfile",),
    "composer": ("composer.json",),
    "flutter": ("pubspec.yaml",),
    "angular": ("angular.json",),
    "jetbrains": (".idea",),
}


def template_category(key: str) -> TemplateCategory:
    """Category of a template key, `Other` when the key is not in the table."""
    return TEMPLATE_CATEGORIES.get(key.lower(), TemplateCategory.OTHER)


# ------------------------------ Template cache ------------------------------


class Template(BaseModel):
    """A named gitignore template as served by the remote API."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Unique template key")
    name: str = Field(..., description="Human readable name")
    contents: str = Field(..., description="Raw gitignore lines")


class ManagerConfig(BaseModel):
    """Persisted state of the template cache."""

    model_config = ConfigDict(frozen=True)

    last_updated: int = Field(default=0, ge=0, description="POSIX seconds of the last successful refresh")
    cache_duration: int = Field(default=DEFAULT_CACHE_DURATION, ge=0, description="TTL in seconds")
    user_overrides: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Extra pattern lines always applied, grouped by a free-form name",
    )
    check_internet: bool = Field(default=True, description="Probe connectivity before refreshing")


class PersistedConfig(ManagerConfig):
    """On-disk shape of `config.json`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    schema_version: Literal[1]


class PersistedTemplates(BaseModel):
    """On-disk shape of `templates.json`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    schema_version: Literal[1]
    templates: dict[str, Template]

    @model_validator(mode="after")
    def _keys_match(self) -> PersistedTemplates:
        for key, template in self.templates.items():
            if key != template.key:
                msg = f"template stored under {key!r} declares key {template.key!r}"
                raise ValueError(msg)
        return self


class LoadOutcome(StrEnum):
    """How a persisted record was recovered at load time."""

    LOADED = auto()
    MISSING = auto()
    MIGRATED = auto()
    CORRUPT = auto()


class CacheState(BaseModel):
    """Result of loading the persisted cache."""

    model_config = ConfigDict(frozen=True)

    config: LoadOutcome
    templates: LoadOutcome
    template_count: int = Field(..., ge=0)


# ------------------------------ Exclusions ----------------------------------


class ExclusionSet(BaseModel):
    """Folder names to prune and extensions to skip, fixed for one run."""

    model_config = ConfigDict(frozen=True)

    folders: frozenset[str] = Field(default_factory=frozenset)
    extensions: frozenset[str] = Field(default_factory=frozenset)

    def prunes(self, name: str, *, include_hidden: bool) -> bool:
        """Whether a directory called `name` must not be descended into."""
        if not include_hidden and name.startswith(HIDDEN_PREFIX):
            return True
        return name in self.folders

    def skips_file(self, path: Path) -> bool:
        """Whether the file's content is replaced by a skipped placeholder."""
        suffix = path.suffix
        return bool(suffix) and suffix[1:] in self.extensions


# ------------------------------ Ingestion -----------------------------------


class Content(BaseModel):
    """File text, decoded (lossily if needed)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["content"] = "content"
    text: str


class TooLarge(BaseModel):
    """File above the size cap; content not read."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["too_large"] = "too_large"
    size: int = Field(..., ge=0)


class Skipped(BaseModel):
    """File excluded by extension."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["skipped"] = "skipped"
    reason: str


class ReadError(BaseModel):
    """File that could not be opened or read."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["read_error"] = "read_error"
    message: str


Outcome = Annotated[Content | TooLarge | Skipped | ReadError, Field(discriminator="kind")]


class FileRecord(BaseModel):
    """Result of ingesting one discovered file.

    Attributes:
        path: Path as discovered by the walk (used verbatim in markers).
        size_bytes: On-disk size, or bytes read for content outcomes (0 when unknown).
        outcome: Exactly one of Content, TooLarge, Skipped or ReadError.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path
    size_bytes: int = Field(default=0, ge=0)
    outcome: Outcome

    @computed_field
    @property
    def counted_bytes(self) -> int:
        """Bytes this record contributes to the run total."""
        if isinstance(self.outcome, (Content, TooLarge)):
            return self.size_bytes
        return 0


class RunStats(BaseModel):
    """Counters aggregated over every folder of a run."""

    total_files: int = Field(default=0, ge=0)
    total_bytes: int = Field(default=0, ge=0)

    def add(self, records: list[FileRecord]) -> None:
        """Account for one folder's records."""
        self.total_files += len(records)
        self.total_bytes += sum(r.counted_bytes for r in records)
