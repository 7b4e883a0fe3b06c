from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from flatten_tree.config import HIDDEN_PREFIX, ExclusionSet
from flatten_tree.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterator


class WalkOptions(BaseModel):
    """Traversal options. Symlinks are never followed."""

    model_config = ConfigDict(frozen=True)

    include_hidden: bool = False
    max_depth: int = Field(default=0, ge=0, description="0 means unbounded")
    show_skipped: bool = False
    exclude_files: frozenset[Path] = Field(
        default_factory=frozenset,
        description="Resolved paths never yielded (e.g. the output file itself)",
    )


class WalkEntry(BaseModel):
    """One visited entry below the root.

    Attributes:
        path: Root joined with the entry's relative parts.
        depth: 1 for direct children of the root.
        is_dir: Directory (never a symlink to one).
        pruned: Directory excluded from descent; only yielded when `show_skipped`.
        skipped: File whose extension is excluded from the content pipeline.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path
    depth: int = Field(..., ge=1)
    is_dir: bool = False
    pruned: bool = False
    skipped: bool = False


def _scan(directory: Path) -> list[os.DirEntry[str]]:
    try:
        with os.scandir(directory) as it:
            return list(it)
    except OSError as e:
        logger.warning("directory_unreadable", path=str(directory), error=str(e))
        return []


def _is_excluded_file(path: Path, excluded: frozenset[Path]) -> bool:
    if not any(p.name == path.name for p in excluded):
        return False
    return path.resolve() in excluded


def iter_entries(root: Path, exclusions: ExclusionSet, options: WalkOptions) -> Iterator[WalkEntry]:
    """Depth-first traversal of `root` in filesystem enumeration order.

    Pruned directories are decided from their name alone and never scanned.
    The root itself is not yielded and is never pruned.

    Args:
        root (Path): the directory to walk
        exclusions (ExclusionSet): folder/extension exclusions for the run
        options (WalkOptions): hidden/depth/show-skipped options

    Yields:
        WalkEntry: visited directories and regular files
    """
    stack: list[tuple[Iterator[os.DirEntry[str]], int]] = [(iter(_scan(root)), 1)]
    while stack:
        entries, depth = stack[-1]
        entry = next(entries, None)
        if entry is None:
            stack.pop()
            continue
        path = Path(entry.path)
        if entry.is_dir(follow_symlinks=False):
            if exclusions.prunes(entry.name, include_hidden=options.include_hidden):
                if options.show_skipped:
                    yield WalkEntry(path=path, depth=depth, is_dir=True, pruned=True)
                continue
            yield WalkEntry(path=path, depth=depth, is_dir=True)
            if options.max_depth == 0 or depth < options.max_depth:
                stack.append((iter(_scan(path)), depth + 1))
        elif entry.is_file(follow_symlinks=False):
            if not options.include_hidden and entry.name.startswith(HIDDEN_PREFIX):
                continue
            if options.exclude_files and _is_excluded_file(path, options.exclude_files):
                continue
            yield WalkEntry(path=path, depth=depth, skipped=exclusions.skips_file(path))


def walk(root: Path, exclusions: ExclusionSet, options: WalkOptions) -> Iterator[WalkEntry]:
    """Files below `root` in walk order, including extension-skipped ones."""
    return (e for e in iter_entries(root, exclusions, options) if not e.is_dir)


def collect_files(root: Path, exclusions: ExclusionSet, options: WalkOptions) -> list[Path]:
    """Materialize the walk into the ordered path list handed to ingestion."""
    return [e.path for e in walk(root, exclusions, options)]
