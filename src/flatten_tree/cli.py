"""
flatten_tree: flatten a codebase into a single text file with smart exclusions.

Overview
--------
Each base folder is written as a folder-structure listing followed by every
file's content between ``### <path> BEGIN ###`` / ``### <path> END ###``
markers. Folders and file extensions to skip come from the command line and
from gitignore templates fetched from the toptal.com API, cached in
``~/.flatten/`` and refreshed every 24 hours.

Usage
-----
    # Auto-detect the project type and enable the matching templates
    flatten-tree -f ./project -a

    # Pick templates by hand
    flatten-tree -f ./project -e rust -e node

    # Performance options
    flatten-tree -f ./project -t 8 -m 50000000

    # Template management
    flatten-tree -l
    flatten-tree -u
"""

from __future__ import annotations

import argparse
import sys
from typing import TYPE_CHECKING

from flatten_tree import __version__
from flatten_tree.exceptions import FlattenTreeError, MissingInputError
from flatten_tree.logging import logger, setup_logging
from flatten_tree.pipeline import run
from flatten_tree.remote import ToptalTemplateSource
from flatten_tree.settings import DEFAULT_MAX_FILE_SIZE, DEFAULT_SKIP_EXTENSIONS, DEFAULT_SKIP_FOLDERS, Settings
from flatten_tree.templates import TemplateCache

if TYPE_CHECKING:
    from collections.abc import Sequence


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    p = argparse.ArgumentParser(
        prog="flatten-tree",
        description="High-performance codebase flattening tool with intelligent exclusions.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-f", "--folders", nargs="+", default=[], help="Base folders to process.")
    p.add_argument(
        "-s",
        "--skip-folders",
        nargs="*",
        default=list(DEFAULT_SKIP_FOLDERS),
        help="Folder names to skip.",
    )
    p.add_argument("-o", "--output", default="codebase.md", help="Output file.")
    p.add_argument("-k", "--show-skipped", action="store_true", help="Show skipped folders in the structure.")
    p.add_argument("-t", "--threads", type=int, default=0, help="Worker threads (0 = all CPUs).")
    p.add_argument(
        "-m",
        "--max-file-size",
        type=int,
        default=DEFAULT_MAX_FILE_SIZE,
        help="Maximum file size in bytes (0 = no limit).",
    )
    p.add_argument(
        "-x",
        "--skip-extensions",
        nargs="*",
        default=list(DEFAULT_SKIP_EXTENSIONS),
        help="File extensions to skip.",
    )
    p.add_argument("-a", "--auto-detect", action="store_true", help="Enable templates detected in the folders.")
    p.add_argument("--include-hidden", action="store_true", help="Include hidden files and folders.")
    p.add_argument("--max-depth", type=int, default=0, help="Maximum walk depth (0 = no limit).")
    p.add_argument("-S", "--stats", dest="show_stats", action="store_true", help="Show statistics.")
    p.add_argument("-d", "--dry-run", action="store_true", help="Show what would be processed.")

    templates = p.add_argument_group("exclusion templates")
    templates.add_argument("-l", "--list-templates", action="store_true", help="List available templates.")
    templates.add_argument(
        "-e",
        "--enable-template",
        action="extend",
        nargs="+",
        default=[],
        help="Enable templates (repeatable).",
    )
    templates.add_argument(
        "-D",
        "--disable-template",
        action="extend",
        nargs="+",
        default=[],
        help="Disable templates (repeatable).",
    )
    templates.add_argument("-u", "--force-update", action="store_true", help="Refresh templates from the API.")
    templates.add_argument("--show-enabled", action="store_true", help="Show enabled templates.")

    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument("--cache-dir", type=str, default=None, help="Template cache directory.")
    args = p.parse_args(argv)
    values = {k: v for k, v in vars(args).items() if v is not None}
    return Settings(**values)


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    if settings.log_file:
        setup_logging(settings.log_file)

    try:
        if not settings.folders and not settings.template_only:
            raise MissingInputError
        cache = TemplateCache.initialize(
            settings.cache_dir,
            ToptalTemplateSource(settings.api_url),
            force=settings.force_update,
        )
        run(settings, cache)
    except FlattenTreeError as e:
        logger.error("run_failed", error=str(e), kind=type(e).__name__)
        print(str(e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
