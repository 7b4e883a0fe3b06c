from __future__ import annotations

from typing import TYPE_CHECKING

from flatten_tree.config import (
    COMMENT_PREFIX,
    GLOB_METACHARS,
    NEGATION_PREFIX,
    PROJECT_MARKERS,
    ExclusionSet,
    Template,
)
from flatten_tree.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path


def iter_pattern_lines(contents: str) -> Iterable[str]:
    """Yield the meaningful lines of a gitignore-style text (no blanks, no comments)."""
    for line in contents.splitlines():
        s = line.strip()
        if s and not s.startswith(COMMENT_PREFIX):
            yield s


def extract_folder_name(pattern: str) -> str | None:
    """Map a pattern line to a folder name, or None if it is not a plain name.

    Args:
        pattern (str): a stripped, non-comment pattern line

    Returns:
        str | None: the folder name (`build/` and `/build` both give `build`)
    """
    if pattern.startswith(NEGATION_PREFIX):
        return None
    name = pattern.strip("/")
    if not name or "/" in name or "." in name or "*" in name:
        return None
    return name


def extract_extension(pattern: str) -> str | None:
    """Map a `*.<ext>` pattern line to its extension (without the dot), or None.

    Multi-dot patterns such as `*.rs.bk` are inert: files are matched on their last suffix only.
    """
    if not pattern.startswith("*."):
        return None
    ext = pattern[2:]
    if not ext or "/" in ext or "." in ext or any(c in GLOB_METACHARS for c in ext):
        return None
    return ext


def marker_present(root: Path, marker: str) -> bool:
    """Check a detection marker under `root`; wildcard markers are globbed against real entries."""
    if any(c in GLOB_METACHARS for c in marker):
        return next(root.glob(marker), None) is not None
    return (root / marker).exists()


def detect_project(root: Path) -> set[str]:
    """Template keys whose marker files or folders are present in `root`.

    Args:
        root (Path): the project root to inspect (only its direct entries)

    Returns:
        set[str]: detected template keys
    """
    if not root.is_dir():
        return set()
    return {key for key, markers in PROJECT_MARKERS.items() if any(marker_present(root, m) for m in markers)}


class ExclusionEngine:
    """Derive folder and extension exclusions from templates and overrides.

    Template selection (`enable`, `disable`, `enable_detected`) is mutable
    until `build()` freezes the result into an `ExclusionSet` for the run.
    An explicit `disable` wins over detection; detection only ever adds keys.
    """

    def __init__(
        self,
        templates: Mapping[str, Template],
        *,
        user_overrides: Mapping[str, list[str]] | None = None,
    ) -> None:
        self._templates = templates
        self._user_overrides = dict(user_overrides or {})
        self._explicit: set[str] = set()
        self._detected: set[str] = set()
        self._disabled: set[str] = set()

    @property
    def enabled_templates(self) -> set[str]:
        """Effective keys: explicitly enabled or detected, minus explicitly disabled."""
        return (self._explicit | self._detected) - self._disabled

    def enable(self, key: str) -> None:
        self._explicit.add(key)
        self._disabled.discard(key)
        if key not in self._templates:
            logger.warning("template_not_cached", key=key)

    def disable(self, key: str) -> bool:
        """Disable a key; returns whether it was enabled before."""
        was_enabled = key in self.enabled_templates
        self._explicit.discard(key)
        self._disabled.add(key)
        return was_enabled

    def enable_detected(self, root: Path) -> set[str]:
        """Run auto-detection on `root` and add the detected keys."""
        detected = detect_project(root)
        self._detected |= detected
        logger.info("templates_detected", root=str(root), keys=sorted(detected))
        return detected

    def pattern_lines(self) -> list[str]:
        """All pattern lines in effect, in a stable order."""
        lines: list[str] = []
        for key in sorted(self.enabled_templates):
            template = self._templates.get(key)
            if template is not None:
                lines.extend(iter_pattern_lines(template.contents))
        for name in sorted(self._user_overrides):
            lines.extend(iter_pattern_lines("\n".join(self._user_overrides[name])))
        return lines

    def folder_patterns(self) -> set[str]:
        return {name for line in self.pattern_lines() if (name := extract_folder_name(line))}

    def extension_patterns(self) -> set[str]:
        return {ext for line in self.pattern_lines() if (ext := extract_extension(line))}

    def build(self, skip_folders: Iterable[str] = (), skip_extensions: Iterable[str] = ()) -> ExclusionSet:
        """Freeze the current selection plus the run's skip lists into an `ExclusionSet`."""
        extensions = {e.lstrip(".") for e in skip_extensions if e.strip(".")}
        return ExclusionSet(
            folders=frozenset(self.folder_patterns() | {f for f in skip_folders if f}),
            extensions=frozenset(self.extension_patterns() | extensions),
        )
