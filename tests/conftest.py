from __future__ import annotations

from pathlib import Path

import pytest

from flatten_tree.config import Template
from flatten_tree.exceptions import FetchError


class FakeSource:
    """In-memory stand-in for the remote template API."""

    def __init__(
        self,
        templates: dict[str, str] | None = None,
        *,
        bulk: bool = True,
        reachable: bool = True,
        failing_keys: frozenset[str] = frozenset(),
        down: bool = False,
    ) -> None:
        self.templates = dict(templates or {})
        self.bulk = bulk
        self.reachable = reachable
        self.failing_keys = failing_keys
        self.down = down
        self.calls: list[str] = []

    def is_reachable(self) -> bool:
        self.calls.append("is_reachable")
        return self.reachable

    def fetch_all(self) -> dict[str, Template]:
        self.calls.append("fetch_all")
        if self.down or not self.bulk:
            raise FetchError(url="fake://list?format=json", message="bulk unavailable")
        return {k: Template(key=k, name=k, contents=v) for k, v in self.templates.items()}

    def list_keys(self) -> list[str]:
        self.calls.append("list_keys")
        if self.down:
            raise FetchError(url="fake://list", message="down")
        return list(self.templates)

    def fetch_one(self, key: str) -> Template:
        self.calls.append(f"fetch_one:{key}")
        if self.down or key in self.failing_keys:
            raise FetchError(url=f"fake://{key}", message="boom")
        return Template(key=key, name=key, contents=self.templates[key])


RUST_TEMPLATE = "# Rust\n/target/\n**/*.rs.bk\n*.pdb\n"
NODE_TEMPLATE = "# Node\nnode_modules/\n*.log\nnpm-debug.log*\n.env\n"
PYTHON_TEMPLATE = "# Python\n__pycache__/\n*.py[cod]\n*.egg-info/\nvenv\n"


@pytest.fixture
def template_texts() -> dict[str, str]:
    return {"rust": RUST_TEMPLATE, "node": NODE_TEMPLATE, "python": PYTHON_TEMPLATE}


@pytest.fixture
def fake_source(template_texts: dict[str, str]) -> FakeSource:
    return FakeSource(template_texts)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Small project tree with an excluded folder, a hidden folder and a binary file."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "tests").mkdir()
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / ".hidden_dir").mkdir()
    (root / "src" / "main.rs").write_text("fn main() {}", encoding="utf-8")
    (root / "tests" / "integration.rs").write_text("#[test] fn t() {}", encoding="utf-8")
    (root / "README.md").write_text("# Test Project", encoding="utf-8")
    (root / "test.bin").write_bytes(b"\x00\x01\x02")
    (root / "node_modules" / "pkg" / "index.js").write_text("module.exports = 1;", encoding="utf-8")
    (root / ".hidden_dir" / "secret.txt").write_text("hidden", encoding="utf-8")
    return root


@pytest.fixture
def make_source() -> type[FakeSource]:
    return FakeSource
