"""Run orchestration: configure exclusions once, then flatten folders one at a time.

Phases never overlap: the template cache is refreshed (and written) before the
exclusion set is frozen, and the exclusion set is frozen before any walk.
Within a folder, all file results are collected before anything is written,
so the sink is only ever written from the calling thread.
"""

from __future__ import annotations

import sys
from collections import defaultdict
from contextlib import nullcontext
from typing import TYPE_CHECKING, TextIO

from flatten_tree.config import ExclusionSet, RunStats, template_category
from flatten_tree.exceptions import MissingInputError, OutputSinkError
from flatten_tree.exclusions import ExclusionEngine
from flatten_tree.ingest import ParallelIngester, make_pool, resolve_worker_count
from flatten_tree.logging import logger
from flatten_tree.output_construction import (
    build_structure_lines,
    display_path,
    emit_contents,
    emit_dry_run_listing,
    emit_structure,
    finalize,
)
from flatten_tree.walker import WalkOptions, collect_files

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from flatten_tree.settings import Settings
    from flatten_tree.templates import TemplateCache

LISTING_COLUMNS = 5


def _log_progress(done: int, total: int) -> None:
    logger.debug("file_ingested", done=done, total=total)


def configure_engine(settings: Settings, cache: TemplateCache) -> ExclusionEngine:
    """Build the exclusion engine from a snapshot of the cache and the run's template choices."""
    engine = ExclusionEngine(cache.snapshot(), user_overrides=cache.config.user_overrides)
    for key in settings.enable_template:
        engine.enable(key)
    for key in settings.disable_template:
        engine.disable(key)
    if settings.auto_detect:
        for folder in settings.folders:
            if folder.is_dir():
                engine.enable_detected(folder)
    return engine


def walk_options(settings: Settings) -> WalkOptions:
    exclude: frozenset = frozenset()
    if not settings.dry_run:
        exclude = frozenset({settings.output.resolve()})
    return WalkOptions(
        include_hidden=settings.include_hidden,
        max_depth=settings.max_depth,
        show_skipped=settings.show_skipped,
        exclude_files=exclude,
    )


def format_template_listing(keys: Sequence[str]) -> str:
    """Group template keys by category, five per line.

    Args:
        keys (Sequence[str]): available template keys

    Returns:
        str: the listing text, ending with a newline
    """
    groups: dict[str, list[str]] = defaultdict(list)
    for key in sorted(keys):
        groups[template_category(key)].append(key)
    lines = [f"Available exclusion templates ({len(keys)} total):"]
    for category in sorted(groups):
        lines.append("")
        lines.append(f"{category}:")
        members = groups[category]
        for i in range(0, len(members), LISTING_COLUMNS):
            lines.append("  " + ", ".join(members[i : i + LISTING_COLUMNS]))
    return "\n".join(lines) + "\n"


def format_enabled(keys: set[str]) -> str:
    if not keys:
        return "No templates currently enabled.\n"
    lines = [f"Enabled templates ({len(keys)}):"]
    lines.extend(f"  - {key}" for key in sorted(keys))
    return "\n".join(lines) + "\n"


def flatten_folders(
    folders: Sequence[Path],
    exclusions: ExclusionSet,
    options: WalkOptions,
    ingester: ParallelIngester,
    *,
    size_cap: int,
    sink: TextIO | None,
    console: TextIO,
) -> RunStats:
    """Flatten each folder in turn into `sink` (or list it on `console` when `sink` is None).

    Args:
        folders (Sequence[Path]): root folders, processed sequentially
        exclusions (ExclusionSet): the frozen exclusions of the run
        options (WalkOptions): traversal options
        ingester (ParallelIngester): reader bound to the run's pool
        size_cap (int): maximum file size in bytes (0 = no limit)
        sink (TextIO | None): the output artifact, None for a dry run
        console (TextIO): where progress notices go

    Returns:
        RunStats: files and bytes over every processed folder
    """
    stats = RunStats()
    for folder in folders:
        if not folder.is_dir():
            logger.warning("folder_missing", folder=str(folder))
            print(f"Warning: Folder {display_path(folder)} does not exist, skipping", file=sys.stderr)
            continue

        console.write(f"Processing folder: {display_path(folder)}\n")
        if sink is not None:
            emit_structure(folder, exclusions, options, sink)
        else:
            console.write(f"📁 Folder structure for {display_path(folder)}\n")
            for line in build_structure_lines(folder, exclusions, options):
                console.write(f"{line}\n")

        files = collect_files(folder, exclusions, options)
        logger.info("folder_walked", folder=str(folder), files=len(files))
        if not files:
            console.write(f"No files found in {display_path(folder)}\n")
            continue

        records = ingester.ingest(files, exclusions, size_cap, on_progress=_log_progress)
        stats.add(records)
        if sink is not None:
            emit_contents(folder, records, sink)
        else:
            console.write(f"📄 Files to process from {display_path(folder)}:\n")
            emit_dry_run_listing(records, console)
    return stats


def run(
    settings: Settings,
    cache: TemplateCache,
    *,
    console: TextIO | None = None,
) -> RunStats | None:
    """Execute one invocation after the template cache has been initialized.

    Template listing and show-enabled requests print and return None, as do
    template-management-only invocations without folders.

    Raises:
        MissingInputError: if there is nothing to flatten and nothing to manage.
        OutputSinkError: if the output file cannot be created.

    Returns:
        RunStats | None: the run statistics, or None when nothing was flattened
    """
    out = console if console is not None else sys.stdout
    engine = configure_engine(settings, cache)

    if settings.list_templates:
        out.write(format_template_listing(cache.get_available_templates()))
        return None
    if settings.show_enabled:
        out.write(format_enabled(engine.enabled_templates))
        return None
    if settings.template_only:
        return None
    if not settings.folders:
        raise MissingInputError

    exclusions = engine.build(settings.skip_folders, settings.skip_extensions)
    options = walk_options(settings)
    logger.info(
        "run_configured",
        templates=sorted(engine.enabled_templates),
        folders=len(exclusions.folders),
        extensions=len(exclusions.extensions),
        workers=resolve_worker_count(settings.threads),
    )

    out.write(f"Processing {len(settings.folders)} folders\n")
    if settings.dry_run:
        out.write("🔍 DRY RUN MODE - No output file will be created\n")
        sink_cm = nullcontext(None)
    else:
        out.write(f"Output file: {display_path(settings.output)}\n")
        try:
            sink_cm = settings.output.open("w", encoding="utf-8", newline="\n")
        except OSError as e:
            raise OutputSinkError(path=settings.output, message=f"Failed to create output file ({e})") from e

    with sink_cm as sink, make_pool(settings.threads) as pool:
        stats = flatten_folders(
            settings.folders,
            exclusions,
            options,
            ParallelIngester(pool),
            size_cap=settings.max_file_size,
            sink=sink,
            console=out,
        )

    out.write("\n✓ Flatten completed successfully!\n")
    out.write(finalize(stats, show_stats=settings.show_stats) + "\n")
    if not settings.dry_run:
        out.write(f"Output written to: {display_path(settings.output)}\n")
    return stats
