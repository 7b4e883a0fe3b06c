from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from flatten_tree import templates as cache_module
from flatten_tree.config import LoadOutcome, ManagerConfig, Template
from flatten_tree.exceptions import FetchError, TemplatesUnavailableError
from flatten_tree.templates import TemplateCache, decode_config, decode_templates

if TYPE_CHECKING:
    from pathlib import Path

    from pytest_mock import MockerFixture

NOW = 1_700_000_000.0


def _clock() -> float:
    return NOW


def _populate(cache_dir: Path, templates: dict[str, str], *, last_updated: int = int(NOW)) -> None:
    cache_dir.mkdir(parents=True, exist_ok=True)
    (cache_dir / "templates.json").write_text(
        json.dumps({
            "schema_version": 1,
            "templates": {k: {"key": k, "name": k, "contents": v} for k, v in templates.items()},
        }),
        encoding="utf-8",
    )
    (cache_dir / "config.json").write_text(
        json.dumps({
            "schema_version": 1,
            "last_updated": last_updated,
            "cache_duration": 86_400,
            "user_overrides": {},
            "check_internet": True,
        }),
        encoding="utf-8",
    )


@pytest.mark.unit
def test_load_missing_files_yields_defaults(cache_dir: Path) -> None:
    cache = TemplateCache(cache_dir, clock=_clock)

    state = cache.load()

    assert state.config is LoadOutcome.MISSING
    assert state.templates is LoadOutcome.MISSING
    assert state.template_count == 0
    assert cache.config == ManagerConfig()
    assert not cache_dir.exists()


@pytest.mark.unit
def test_load_corrupt_files_falls_back_without_raising(cache_dir: Path) -> None:
    cache_dir.mkdir()
    (cache_dir / "config.json").write_text("{not json", encoding="utf-8")
    (cache_dir / "templates.json").write_text('{"schema_version": 1, "templates": 3}', encoding="utf-8")

    cache = TemplateCache(cache_dir, clock=_clock)
    state = cache.load()

    assert state.config is LoadOutcome.CORRUPT
    assert state.templates is LoadOutcome.CORRUPT
    assert cache.keys() == []
    assert cache.config.cache_duration == 86_400


@pytest.mark.unit
def test_decode_legacy_unversioned_payloads() -> None:
    config, outcome = decode_config({"last_updated": 5, "cache_duration": 60, "user_overrides": {}, "check_internet": False})
    templates, t_outcome = decode_templates({
        "rust": {"key": "rust", "name": "Rust", "contents": "target", "file_name": "rust.gitignore"},
    })

    assert outcome is LoadOutcome.MIGRATED
    assert config.last_updated == 5
    assert config.check_internet is False
    assert t_outcome is LoadOutcome.MIGRATED
    assert templates["rust"].name == "Rust"


@pytest.mark.unit
def test_decode_rejects_unknown_version_and_mismatched_keys() -> None:
    _, outcome = decode_config({"schema_version": 2, "last_updated": 5})
    _, t_outcome = decode_templates({
        "schema_version": 1,
        "templates": {"rust": {"key": "go", "name": "Go", "contents": ""}},
    })

    assert outcome is LoadOutcome.CORRUPT
    assert t_outcome is LoadOutcome.CORRUPT


@pytest.mark.unit
def test_is_stale_follows_ttl_and_empty_store(cache_dir: Path, template_texts: dict[str, str]) -> None:
    _populate(cache_dir, template_texts, last_updated=int(NOW) - 100)
    cache = TemplateCache(cache_dir, clock=_clock)
    cache.load()

    assert cache.is_stale(NOW) is False
    assert cache.is_stale(NOW + 86_400) is True

    empty = TemplateCache(cache_dir / "elsewhere", clock=_clock)
    empty.load()
    assert empty.is_stale(0) is True


@pytest.mark.unit
def test_refresh_prefers_bulk_shape_and_persists(cache_dir: Path, fake_source) -> None:  # noqa: ANN001
    cache = TemplateCache(cache_dir, fake_source, fetch_delay=0, clock=_clock)
    cache.load()

    cache.refresh()

    assert fake_source.calls == ["fetch_all"]
    assert cache.get_available_templates() == ["node", "python", "rust"]
    assert cache.config.last_updated == int(NOW)
    stored = json.loads((cache_dir / "templates.json").read_text(encoding="utf-8"))
    config = json.loads((cache_dir / "config.json").read_text(encoding="utf-8"))
    assert stored["schema_version"] == 1
    assert set(stored["templates"]) == {"node", "python", "rust"}
    assert config["last_updated"] == int(NOW)


@pytest.mark.unit
def test_refresh_falls_back_to_per_key_fetch_and_skips_failures(
    cache_dir: Path,
    make_source,  # noqa: ANN001
    template_texts: dict[str, str],
) -> None:
    source = make_source(template_texts, bulk=False, failing_keys=frozenset({"node"}))
    cache = TemplateCache(cache_dir, source, fetch_delay=0, clock=_clock)

    cache.refresh()

    assert "list_keys" in source.calls
    assert cache.get("node") is None
    assert cache.get("rust") == Template(key="rust", name="rust", contents=template_texts["rust"])


@pytest.mark.unit
def test_refresh_fails_when_no_template_obtained(cache_dir: Path, make_source, template_texts: dict[str, str]) -> None:  # noqa: ANN001
    source = make_source(template_texts, bulk=False, failing_keys=frozenset(template_texts))
    cache = TemplateCache(cache_dir, source, fetch_delay=0, clock=_clock)

    with pytest.raises(FetchError):
        cache.refresh()

    assert not (cache_dir / "config.json").exists()


@pytest.mark.unit
def test_update_if_needed_keeps_cache_on_fetch_failure(
    cache_dir: Path,
    make_source,  # noqa: ANN001
    template_texts: dict[str, str],
) -> None:
    _populate(cache_dir, template_texts, last_updated=0)
    cache = TemplateCache(cache_dir, make_source(down=True), fetch_delay=0, clock=_clock)
    cache.load()

    refreshed = cache.update_if_needed()

    assert refreshed is False
    assert cache.get_available_templates() == ["node", "python", "rust"]
    assert cache.config.last_updated == 0


@pytest.mark.unit
def test_initialize_fails_with_empty_cache_and_fetch_failure(cache_dir: Path, make_source) -> None:  # noqa: ANN001
    with pytest.raises(TemplatesUnavailableError):
        TemplateCache.initialize(cache_dir, make_source(down=True), fetch_delay=0, clock=_clock)


@pytest.mark.unit
def test_offline_probe_counts_as_fetch_failure(cache_dir: Path, make_source, template_texts: dict[str, str]) -> None:  # noqa: ANN001
    _populate(cache_dir, template_texts, last_updated=0)
    source = make_source(template_texts, reachable=False)

    cache = TemplateCache.initialize(cache_dir, source, fetch_delay=0, clock=_clock)

    assert source.calls == ["is_reachable"]
    assert len(cache.keys()) == len(template_texts)


@pytest.mark.unit
def test_fresh_cache_is_not_refetched_unless_forced(cache_dir: Path, fake_source, template_texts: dict[str, str]) -> None:  # noqa: ANN001
    _populate(cache_dir, {"go": "vendor\n"})

    cache = TemplateCache.initialize(cache_dir, fake_source, fetch_delay=0, clock=_clock)
    assert fake_source.calls == []
    assert cache.keys() == ["go"]

    assert cache.force_update() is True
    assert sorted(cache.keys()) == sorted(template_texts)


@pytest.mark.unit
def test_snapshot_is_unaffected_by_later_refresh(cache_dir: Path, fake_source) -> None:  # noqa: ANN001
    _populate(cache_dir, {"go": "vendor\n"})
    cache = TemplateCache(cache_dir, fake_source, fetch_delay=0, clock=_clock)
    cache.load()
    snapshot = cache.snapshot()

    cache.refresh()

    assert list(snapshot) == ["go"]
    assert "go" not in cache.keys()


@pytest.mark.unit
def test_disabled_connectivity_check_skips_probe(cache_dir: Path, make_source, template_texts: dict[str, str]) -> None:  # noqa: ANN001
    _populate(cache_dir, {"go": "vendor\n"}, last_updated=0)
    config_path = cache_dir / "config.json"
    config = json.loads(config_path.read_text(encoding="utf-8"))
    config_path.write_text(json.dumps({**config, "check_internet": False}), encoding="utf-8")
    source = make_source(template_texts, reachable=False)

    cache = TemplateCache.initialize(cache_dir, source, fetch_delay=0, clock=_clock)

    assert "is_reachable" not in source.calls
    assert cache.config.check_internet is False
    assert sorted(cache.keys()) == sorted(template_texts)


@pytest.mark.unit
def test_config_write_failure_never_pairs_new_timestamp_with_old_templates(
    cache_dir: Path,
    fake_source,  # noqa: ANN001
    mocker: MockerFixture,
) -> None:
    _populate(cache_dir, {"go": "vendor\n"}, last_updated=100)
    cache = TemplateCache(cache_dir, fake_source, fetch_delay=0, clock=_clock)
    cache.load()
    real_write = cache_module._atomic_write_json

    def fail_on_config(path: Path, payload: dict) -> None:
        if path.name == "config.json":
            raise OSError("disk full")
        real_write(path, payload)

    mocker.patch.object(cache_module, "_atomic_write_json", side_effect=fail_on_config)

    cache.refresh()

    stored = json.loads((cache_dir / "templates.json").read_text(encoding="utf-8"))
    config = json.loads((cache_dir / "config.json").read_text(encoding="utf-8"))
    assert set(stored["templates"]) == {"node", "python", "rust"}
    assert config["last_updated"] == 100


@pytest.mark.unit
def test_refresh_keeps_fetched_templates_when_cache_dir_is_unwritable(
    cache_dir: Path,
    fake_source,  # noqa: ANN001
    mocker: MockerFixture,
) -> None:
    mocker.patch.object(cache_module, "_atomic_write_json", side_effect=PermissionError("read-only"))
    cache = TemplateCache(cache_dir, fake_source, fetch_delay=0, clock=_clock)

    cache.refresh()

    assert cache.get("rust") is not None
    assert cache.config.last_updated == int(NOW)
    assert not (cache_dir / "templates.json").exists()
