from __future__ import annotations

import mmap
import os
import threading
from concurrent.futures import Executor, ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

from flatten_tree.config import Content, ExclusionSet, FileRecord, ReadError, Skipped, TooLarge
from flatten_tree.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    ProgressFn = Callable[[int, int], None]

# Files at least this large are memory-mapped instead of read().
MMAP_THRESHOLD = 64 * 1024


def resolve_worker_count(workers: int) -> int:
    """Translate the `threads` input (0 = all available parallelism) into a pool size."""
    if workers > 0:
        return workers
    return os.cpu_count() or 1


def make_pool(workers: int = 0) -> ThreadPoolExecutor:
    """Create the bounded pool owned by one run."""
    return ThreadPoolExecutor(max_workers=resolve_worker_count(workers), thread_name_prefix="flatten-read")


def decode_text(data: bytes) -> str:
    """Decode as UTF-8, substituting U+FFFD for invalid sequences instead of failing."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("utf-8", errors="replace")


def read_file(path: Path, exclusions: ExclusionSet, size_cap: int) -> FileRecord:
    """Produce the single outcome for one discovered file.

    Args:
        path (Path): the file to read
        exclusions (ExclusionSet): the run's exclusions (extension check)
        size_cap (int): maximum size in bytes; 0 disables the cap

    Returns:
        FileRecord: Skipped, TooLarge, Content or ReadError
    """
    if exclusions.skips_file(path):
        return FileRecord(path=path, outcome=Skipped(reason=f"extension {path.suffix[1:]!r} is excluded"))
    try:
        with path.open("rb") as fh:
            size = os.fstat(fh.fileno()).st_size
            if size_cap > 0 and size > size_cap:
                return FileRecord(path=path, size_bytes=size, outcome=TooLarge(size=size))
            if size == 0:
                data = b""
            elif size >= MMAP_THRESHOLD:
                with mmap.mmap(fh.fileno(), 0, access=mmap.ACCESS_READ) as mapped:
                    data = mapped[:]
            else:
                data = fh.read()
    except (OSError, ValueError) as e:
        logger.debug("file_read_failed", path=str(path), error=str(e))
        return FileRecord(path=path, outcome=ReadError(message=str(e)))
    return FileRecord(path=path, size_bytes=len(data), outcome=Content(text=decode_text(data)))


class ParallelIngester:
    """Read files across a bounded pool, returning results in input order.

    The pool is passed in (see `make_pool`) so each run or test owns its own
    workers. Results are placed by input index as futures complete, so the
    output order never depends on completion order.
    """

    def __init__(self, pool: Executor) -> None:
        self._pool = pool
        self._lock = threading.Lock()
        self._done = 0

    def _read_and_count(
        self,
        path: Path,
        exclusions: ExclusionSet,
        size_cap: int,
        total: int,
        on_progress: ProgressFn | None,
    ) -> FileRecord:
        record = read_file(path, exclusions, size_cap)
        with self._lock:
            self._done += 1
            done = self._done
        if on_progress is not None:
            on_progress(done, total)
        return record

    def ingest(
        self,
        files: Sequence[Path],
        exclusions: ExclusionSet,
        size_cap: int,
        on_progress: ProgressFn | None = None,
    ) -> list[FileRecord]:
        """Read `files` in parallel.

        Args:
            files (Sequence[Path]): paths in walk order
            exclusions (ExclusionSet): the run's exclusions
            size_cap (int): maximum size in bytes; 0 disables the cap
            on_progress (ProgressFn | None): called from workers with (done, total)

        Returns:
            list[FileRecord]: one record per input path, in input order
        """
        with self._lock:
            self._done = 0
        total = len(files)
        results: list[FileRecord | None] = [None] * total
        futures = {
            self._pool.submit(self._read_and_count, path, exclusions, size_cap, total, on_progress): index
            for index, path in enumerate(files)
        }
        for future in as_completed(futures):
            results[futures[future]] = future.result()
        return [r for r in results if r is not None]
