from __future__ import annotations

import json
import os
import tempfile
import time
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import TypeAdapter, ValidationError

from flatten_tree.config import (
    CONFIG_FILE_NAME,
    SCHEMA_VERSION,
    TEMPLATES_FILE_NAME,
    CacheState,
    LoadOutcome,
    ManagerConfig,
    PersistedConfig,
    PersistedTemplates,
    Template,
)
from flatten_tree.exceptions import FetchError, TemplatesUnavailableError
from flatten_tree.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from pathlib import Path

_LEGACY_TEMPLATES = TypeAdapter(dict[str, Template])


class TemplateSource(Protocol):
    """Logical contract of the remote template endpoint."""

    def is_reachable(self) -> bool: ...

    def fetch_all(self) -> Mapping[str, Template]: ...

    def list_keys(self) -> Sequence[str]: ...

    def fetch_one(self, key: str) -> Template: ...


def decode_config(data: Any) -> tuple[ManagerConfig, LoadOutcome]:  # noqa: ANN401
    """Decode a parsed `config.json` payload.

    Args:
        data (Any): the parsed JSON document

    Returns:
        tuple[ManagerConfig, LoadOutcome]: the config to use and how it was obtained.
            Versioned payloads must match the current schema exactly; unversioned
            payloads are accepted when they match the legacy field set.
    """
    if isinstance(data, dict) and "schema_version" in data:
        try:
            persisted = PersistedConfig.model_validate(data)
        except ValidationError:
            return ManagerConfig(), LoadOutcome.CORRUPT
        return ManagerConfig.model_validate(persisted.model_dump(exclude={"schema_version"})), LoadOutcome.LOADED
    try:
        return ManagerConfig.model_validate(data), LoadOutcome.MIGRATED
    except ValidationError:
        return ManagerConfig(), LoadOutcome.CORRUPT


def decode_templates(data: Any) -> tuple[dict[str, Template], LoadOutcome]:  # noqa: ANN401
    """Decode a parsed `templates.json` payload.

    Args:
        data (Any): the parsed JSON document

    Returns:
        tuple[dict[str, Template], LoadOutcome]: the templates to use and how they were obtained
    """
    if isinstance(data, dict) and "schema_version" in data:
        try:
            persisted = PersistedTemplates.model_validate(data)
        except ValidationError:
            return {}, LoadOutcome.CORRUPT
        return dict(persisted.templates), LoadOutcome.LOADED
    try:
        legacy = _LEGACY_TEMPLATES.validate_python(data)
    except ValidationError:
        return {}, LoadOutcome.CORRUPT
    if any(key != template.key for key, template in legacy.items()):
        return {}, LoadOutcome.CORRUPT
    return legacy, LoadOutcome.MIGRATED


def _read_json(path: Path) -> tuple[Any, LoadOutcome | None]:
    """Read a JSON file; the outcome is set only when decoding cannot proceed."""
    if not path.exists():
        return None, LoadOutcome.MISSING
    try:
        return json.loads(path.read_bytes()), None
    except (OSError, ValueError) as e:
        logger.warning("cache_file_unreadable", path=str(path), error=str(e))
        return None, LoadOutcome.CORRUPT


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class TemplateCache:
    """Persisted gitignore templates with a staleness clock.

    The in-memory template mapping is replaced in one assignment after a
    successful refresh, so readers never observe a partially updated cache.
    On disk, templates are written before the config that carries the new
    timestamp.
    """

    def __init__(
        self,
        cache_dir: Path,
        source: TemplateSource | None = None,
        *,
        fetch_delay: float = 0.1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = cache_dir
        self.config_path = cache_dir / CONFIG_FILE_NAME
        self.templates_path = cache_dir / TEMPLATES_FILE_NAME
        self._source = source
        self._fetch_delay = fetch_delay
        self._clock = clock
        self._config = ManagerConfig()
        self._templates: Mapping[str, Template] = MappingProxyType({})

    @classmethod
    def initialize(
        cls,
        cache_dir: Path,
        source: TemplateSource | None,
        *,
        force: bool = False,
        fetch_delay: float = 0.1,
        clock: Callable[[], float] = time.time,
    ) -> TemplateCache:
        """Load the persisted cache and refresh it when stale (or when forced).

        Raises:
            TemplatesUnavailableError: if the cache is empty and the refresh fails.

        Returns:
            TemplateCache: a cache holding a usable template set
        """
        cache = cls(cache_dir, source, fetch_delay=fetch_delay, clock=clock)
        cache.load()
        cache.update_if_needed(force=force)
        return cache

    @property
    def config(self) -> ManagerConfig:
        return self._config

    def load(self) -> CacheState:
        """Load config and templates from disk, substituting defaults for anything unusable."""
        data, outcome = _read_json(self.config_path)
        if outcome is None:
            self._config, outcome = decode_config(data)
        else:
            self._config = ManagerConfig()
        config_outcome = outcome

        data, outcome = _read_json(self.templates_path)
        templates: dict[str, Template] = {}
        if outcome is None:
            templates, outcome = decode_templates(data)
        self._templates = MappingProxyType(templates)

        for path, result in ((self.config_path, config_outcome), (self.templates_path, outcome)):
            if result is LoadOutcome.CORRUPT:
                logger.warning("cache_file_corrupt_using_defaults", path=str(path))
            elif result is LoadOutcome.MIGRATED:
                logger.info("cache_file_migrated", path=str(path))

        return CacheState(config=config_outcome, templates=outcome, template_count=len(templates))

    def is_stale(self, now: float | None = None) -> bool:
        """Whether a refresh is due. An empty store is always stale."""
        if not self._templates:
            return True
        current = self._clock() if now is None else now
        return current - self._config.last_updated > self._config.cache_duration

    def _fetch(self) -> dict[str, Template]:
        if self._source is None:
            raise FetchError(message="No template source configured")
        try:
            templates = dict(self._source.fetch_all())
        except FetchError as e:
            logger.warning("template_bulk_fetch_failed", error=str(e))
            templates = {}
        if templates:
            return templates

        keys = self._source.list_keys()
        failed: list[str] = []
        for i, key in enumerate(keys):
            if i and self._fetch_delay > 0:
                time.sleep(self._fetch_delay)
            try:
                templates[key] = self._source.fetch_one(key)
            except FetchError as e:
                failed.append(key)
                logger.warning("template_fetch_failed", key=key, error=str(e))
        if not templates:
            raise FetchError(message=f"No template could be fetched ({len(failed)} failed)")
        return templates

    def refresh(self) -> None:
        """Fetch the full template set and persist it with a new timestamp.

        Raises:
            FetchError: if no template at all could be obtained.
        """
        fetched = self._fetch()
        config = self._config.model_copy(update={"last_updated": int(self._clock())})
        try:
            self._save(fetched, config)
        except OSError as e:
            logger.warning("template_cache_not_persisted", path=str(self.cache_dir), error=str(e))
        self._templates = MappingProxyType(fetched)
        self._config = config

    def _save(self, templates: Mapping[str, Template], config: ManagerConfig) -> None:
        _atomic_write_json(
            self.templates_path,
            {
                "schema_version": SCHEMA_VERSION,
                "templates": {k: t.model_dump() for k, t in templates.items()},
            },
        )
        self._save_config(config)

    def _save_config(self, config: ManagerConfig) -> None:
        _atomic_write_json(self.config_path, {"schema_version": SCHEMA_VERSION, **config.model_dump()})

    def update_if_needed(self, now: float | None = None, *, force: bool = False) -> bool:
        """Refresh when stale or forced, falling back to cached templates on failure.

        Args:
            now (float | None): current POSIX time; defaults to the cache clock
            force (bool): refresh regardless of staleness

        Raises:
            TemplatesUnavailableError: if the refresh failed and nothing is cached.

        Returns:
            bool: True when fresh templates were fetched
        """
        if not force and not self.is_stale(now):
            return False
        logger.info("templates_updating", cached=len(self._templates))
        try:
            if self._config.check_internet and self._source is not None and not self._source.is_reachable():
                raise FetchError(message="No internet connection available")
            self.refresh()
        except FetchError as e:
            if not self._templates:
                raise TemplatesUnavailableError from e
            logger.warning("templates_update_failed_using_cache", error=str(e), cached=len(self._templates))
            return False
        logger.info("templates_updated", count=len(self._templates))
        return True

    def force_update(self) -> bool:
        return self.update_if_needed(force=True)

    def get(self, key: str) -> Template | None:
        return self._templates.get(key)

    def keys(self) -> list[str]:
        return list(self._templates)

    def get_available_templates(self) -> list[str]:
        """All cached template keys, sorted."""
        return sorted(self._templates)

    def snapshot(self) -> Mapping[str, Template]:
        """Read-only view of the current templates, unaffected by later refreshes."""
        return MappingProxyType(dict(self._templates))
