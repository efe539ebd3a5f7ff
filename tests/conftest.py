"""Shared pytest fixtures."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import yaml

from viewcount.config import Config
from viewcount.core.core import Core


def at(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> int:
    """Milliseconds for a local wall-clock time."""
    return int(datetime(year, month, day, hour, minute).timestamp() * 1000)  # noqa: DTZ001


class FakeClock:
    """Settable clock returning milliseconds."""

    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def write_note(vault_path: Path, path: str, frontmatter: dict[str, Any] | None = None, body: str = "Body\n") -> Path:
    file_path = vault_path / path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    text = body
    if frontmatter is not None:
        text = f"---\n{yaml.safe_dump(frontmatter, sort_keys=False)}---\n{body}"
    file_path.write_text(text, encoding="utf-8")
    return file_path


def read_note_frontmatter(vault_path: Path, path: str) -> dict[str, Any]:
    text = (vault_path / path).read_text(encoding="utf-8")
    if not text.startswith("---"):
        return {}
    return yaml.safe_load(text.split("---", 2)[1]) or {}


def write_settings(vault_path: Path, data: dict[str, Any]) -> Path:
    file_path = vault_path / ".obsidian" / "plugins" / "view-count" / "data.json"
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(json.dumps(data), encoding="utf-8")
    return file_path


def read_settings(vault_path: Path) -> dict[str, Any]:
    return json.loads((vault_path / ".obsidian" / "plugins" / "view-count" / "data.json").read_text(encoding="utf-8"))


def write_snapshot(vault_path: Path, items: list[dict[str, Any]]) -> Path:
    file_path = vault_path / ".obsidian" / "view-count.json"
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(json.dumps({"items": items}), encoding="utf-8")
    return file_path


def read_snapshot(vault_path: Path) -> list[dict[str, Any]]:
    return json.loads((vault_path / ".obsidian" / "view-count.json").read_text(encoding="utf-8"))["items"]


@pytest.fixture
def vault_path(tmp_path):
    """Empty vault directory."""
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def config(vault_path):
    """Config with short debounce intervals."""
    return Config(vault_path=vault_path, save_debounce_ms=10, refresh_debounce_ms=10)


@pytest.fixture
def clock():
    """Clock fixed at noon on 2024-05-15."""
    return FakeClock(at(2024, 5, 15))


@pytest.fixture
def core(config, clock):
    """Core wired to the temporary vault and fake clock."""
    return Core(config, clock)
