from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from flatten_tree import settings as settings_module
from flatten_tree.settings import (
    DEFAULT_API_URL,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_SKIP_EXTENSIONS,
    DEFAULT_SKIP_FOLDERS,
    Settings,
    default_api_url,
    default_cache_dir,
)


@pytest.mark.unit
def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings_module, "ENV_FILE", "")
    monkeypatch.delenv("FLATTEN_TREE_HOME", raising=False)
    monkeypatch.delenv("FLATTEN_TREE_API_URL", raising=False)

    settings = Settings()

    assert settings.folders == []
    assert settings.output == Path("codebase.md")
    assert settings.skip_folders == DEFAULT_SKIP_FOLDERS
    assert settings.skip_extensions == DEFAULT_SKIP_EXTENSIONS
    assert settings.max_file_size == DEFAULT_MAX_FILE_SIZE
    assert settings.threads == 0
    assert settings.cache_dir == Path.home() / ".flatten"
    assert settings.api_url == DEFAULT_API_URL


@pytest.mark.unit
def test_default_lists_are_not_shared() -> None:
    first = Settings()
    first.skip_folders.append("vendor")

    assert "vendor" not in Settings().skip_folders


@pytest.mark.unit
def test_environment_overrides_cache_dir_and_api_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLATTEN_TREE_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("FLATTEN_TREE_API_URL", "https://mirror.test/api")

    assert default_cache_dir() == tmp_path / "home"
    assert default_api_url() == "https://mirror.test/api"


@pytest.mark.unit
def test_dotenv_file_is_consulted(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(f"FLATTEN_TREE_HOME={tmp_path / 'dotenv'}\n", encoding="utf-8")
    monkeypatch.delenv("FLATTEN_TREE_HOME", raising=False)
    monkeypatch.setattr(settings_module, "ENV_FILE", str(env_file))

    assert default_cache_dir() == tmp_path / "dotenv"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("fields", "expected"),
    [
        ({"list_templates": True}, True),
        ({"enable_template": ["rust"]}, True),
        ({"force_update": True}, True),
        ({"force_update": True, "folders": [Path()]}, False),
        ({}, False),
    ],
)
def test_template_only(fields: dict, expected: bool) -> None:
    assert Settings(**fields).template_only is expected


@pytest.mark.unit
def test_negative_limits_are_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(threads=-1)
    with pytest.raises(ValidationError):
        Settings(max_file_size=-5)
