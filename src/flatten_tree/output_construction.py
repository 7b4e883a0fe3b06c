from __future__ import annotations

import os
import re
from typing import TYPE_CHECKING, TextIO

from flatten_tree.config import Content, ExclusionSet, FileRecord, ReadError, RunStats, Skipped, TooLarge
from flatten_tree.walker import WalkOptions, iter_entries

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path

FOLDER_ICON = "📁"
FILE_ICON = "📄"
SKIP_ICON = "⏭️"
INDENT = "    "

KB = 1024.0
MB = 1_048_576.0

_BEGIN_RE = re.compile(r"^### (?P<path>.+) BEGIN ###$", re.MULTILINE)


def display_path(path: Path | str) -> str:
    """Printable form of a path; undecodable name bytes become U+FFFD."""
    return os.fsencode(path).decode("utf-8", errors="replace")


def structure_header(root: Path) -> str:
    return f"### DIRECTORY {display_path(root)} FOLDER STRUCTURE ###"


def content_header(root: Path | str) -> str:
    return f"### DIRECTORY {display_path(root)} FLATTENED CONTENT ###"


def begin_marker(path: Path | str) -> str:
    return f"### {display_path(path)} BEGIN ###"


def end_marker(path: Path | str) -> str:
    return f"### {display_path(path)} END ###"


def build_structure_lines(root: Path, exclusions: ExclusionSet, options: WalkOptions) -> list[str]:
    """Build the indented folder listing of `root`.

    One line per visited entry, four spaces per depth level. Pruned folders
    and extension-skipped files are listed (as skipped) only when
    `options.show_skipped` is set.

    Args:
        root (Path): the folder being flattened
        exclusions (ExclusionSet): the run's exclusions
        options (WalkOptions): traversal options

    Returns:
        list[str]: the listing lines, without trailing newlines
    """
    lines: list[str] = []
    for entry in iter_entries(root, exclusions, options):
        indent = INDENT * (entry.depth - 1)
        name = display_path(entry.path.name)
        if entry.is_dir:
            if entry.pruned:
                lines.append(f"{indent}{SKIP_ICON} {name}/ (skipped)")
            else:
                lines.append(f"{indent}{FOLDER_ICON} {name}/")
        elif entry.skipped:
            if options.show_skipped:
                lines.append(f"{indent}{SKIP_ICON} {name} (skipped)")
        else:
            lines.append(f"{indent}{FILE_ICON} {name}")
    return lines


def emit_structure(root: Path, exclusions: ExclusionSet, options: WalkOptions, sink: TextIO) -> None:
    header = structure_header(root)
    sink.write(f"{header}\n")
    for line in build_structure_lines(root, exclusions, options):
        sink.write(f"{line}\n")
    sink.write(f"{header}\n\n")


def render_outcome(record: FileRecord) -> str:
    """Text written between a file's BEGIN and END markers."""
    outcome = record.outcome
    if isinstance(outcome, Content):
        return outcome.text
    if isinstance(outcome, TooLarge):
        return f"[File too large: {outcome.size} bytes]"
    if isinstance(outcome, Skipped):
        return f"[Binary file skipped: {display_path(record.path)}]"
    if isinstance(outcome, ReadError):
        return f"[Error reading file: {outcome.message}]"
    msg = f"unknown outcome {outcome!r}"
    raise TypeError(msg)


def emit_contents(folder_label: Path | str, records: Sequence[FileRecord], sink: TextIO) -> None:
    """Write one folder's content section, records in the given (walk) order."""
    header = content_header(folder_label)
    sink.write(f"{header}\n")
    for record in records:
        sink.write(f"{begin_marker(record.path)}\n")
        sink.write(render_outcome(record))
        sink.write(f"\n{end_marker(record.path)}\n\n")
    sink.write(f"{header}\n")


def emit_dry_run_listing(records: Sequence[FileRecord], sink: TextIO) -> None:
    """Console listing used instead of the content section when nothing is written."""
    for record in records:
        if isinstance(record.outcome, ReadError):
            sink.write(f"  ❌ {display_path(record.path)} ({record.outcome.message})\n")
        else:
            sink.write(f"  ✅ {display_path(record.path)} ({record.counted_bytes} bytes)\n")


def format_size(num_bytes: float) -> str:
    """Human readable size: bytes below 1 KB, then KB and MB with two decimals."""
    if num_bytes >= MB:
        return f"{num_bytes / MB:.2f} MB"
    if num_bytes >= KB:
        return f"{num_bytes / KB:.2f} KB"
    return f"{int(num_bytes)} bytes"


def finalize(stats: RunStats, *, show_stats: bool = False) -> str:
    """Summarize a run.

    Args:
        stats (RunStats): counters aggregated over every folder
        show_stats (bool): include byte totals and the average file size

    Returns:
        str: the summary lines joined by newlines
    """
    lines = [f"Total files processed: {stats.total_files}"]
    if show_stats:
        lines.append(f"Total bytes processed: {format_size(stats.total_bytes)}")
        if stats.total_files > 0:
            lines.append(f"Average file size: {format_size(stats.total_bytes // stats.total_files)}")
    return "\n".join(lines)


def split_artifact(text: str) -> Iterator[tuple[str, str]]:
    """Re-split a flattened artifact into (path, enclosed text) pairs.

    Args:
        text (str): the artifact contents

    Yields:
        Iterator[tuple[str, str]]: each file's path and the text between its markers
    """
    pos = 0
    while match := _BEGIN_RE.search(text, pos):
        path = match.group("path")
        start = match.end() + 1
        closing = f"\n{end_marker(path)}\n"
        end = text.find(closing, start)
        if end < 0:
            msg = f"missing END marker for {path}"
            raise ValueError(msg)
        yield path, text[start:end]
        pos = end + len(closing)
