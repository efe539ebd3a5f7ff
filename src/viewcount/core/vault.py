"""Filesystem-backed host adapter: blob store, item listing and YAML frontmatter access."""

from collections import deque
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog
import yaml

from viewcount.errors import NotFoundError, StoreIOError
from viewcount.utils import normalize_path

logger = structlog.get_logger(__name__)

FRONTMATTER_DELIMITER = "---"
NOTICE_PREFIX = "View Count: "


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a document into its frontmatter mapping and body.

    Returns an empty mapping and the full text when no frontmatter block is present.

    Raises:
        yaml.YAMLError: If the frontmatter block is not valid YAML
    """
    if not text.startswith(FRONTMATTER_DELIMITER):
        return {}, text
    parts = text.split(f"\n{FRONTMATTER_DELIMITER}", 1)
    if len(parts) < 2:
        return {}, text
    header = parts[0][len(FRONTMATTER_DELIMITER) :]
    body = parts[1].split("\n", 1)[1] if "\n" in parts[1] else ""
    data = yaml.safe_load(header)
    if not isinstance(data, dict):
        return {}, body
    return data, body


def join_frontmatter(frontmatter: dict[str, Any], body: str) -> str:
    """Render a frontmatter mapping and body back into a document."""
    if not frontmatter:
        return body
    header = yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True)
    return f"{FRONTMATTER_DELIMITER}\n{header}{FRONTMATTER_DELIMITER}\n{body}"


class Notifier:
    """Collects short user-visible notices."""

    def __init__(self, maxlen: int = 50) -> None:
        self.messages: deque[str] = deque(maxlen=maxlen)

    def notify(self, message: str) -> None:
        text = f"{NOTICE_PREFIX}{message}"
        self.messages.append(text)
        logger.warning("user_notice", notice=text)


class Vault:
    """A vault rooted at a directory. Paths are vault-relative with forward slashes."""

    def __init__(self, root: Path, config_dir: str = ".obsidian") -> None:
        self.root = root
        self.config_dir = normalize_path(config_dir)

    def config_path(self, name: str) -> str:
        """Path of a file inside the host's private config area."""
        return f"{self.config_dir}/{name}"

    def resolve(self, path: str) -> Path:
        return self.root / normalize_path(path)

    # -------------------------------------------------------------------------
    # Blob store
    # -------------------------------------------------------------------------

    async def exists(self, path: str) -> bool:
        return self.resolve(path).exists()

    async def read(self, path: str) -> str:
        try:
            return self.resolve(path).read_text(encoding="utf-8")
        except OSError as e:
            raise StoreIOError(f"Cannot read '{path}': {e.strerror or e}") from e

    async def write(self, path: str, data: str) -> None:
        file_path = self.resolve(path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(data, encoding="utf-8")
        except OSError as e:
            raise StoreIOError(f"Cannot write '{path}': {e.strerror or e}") from e

    async def create(self, path: str, data: str) -> None:
        """Create a new file; fails if it already exists."""
        file_path = self.resolve(path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with file_path.open("x", encoding="utf-8") as f:
                f.write(data)
        except OSError as e:
            raise StoreIOError(f"Cannot create '{path}': {e.strerror or e}") from e

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def has_item(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def list_items(self, extension: str = ".md") -> list[str]:
        """List vault-relative paths of items with the given extension, skipping the config area."""
        config_root = self.resolve(self.config_dir)
        items = []
        for file_path in sorted(self.root.rglob(f"*{extension}")):
            if file_path.is_relative_to(config_root) or not file_path.is_file():
                continue
            items.append(file_path.relative_to(self.root).as_posix())
        return items

    async def read_frontmatter(self, path: str) -> dict[str, Any]:
        if not self.has_item(path):
            raise NotFoundError(f"Item '{path}' not found")
        frontmatter, _ = split_frontmatter(await self.read(path))
        return frontmatter

    async def process_frontmatter(self, path: str, fn: Callable[[dict[str, Any]], None]) -> None:
        """Read-modify-write the item's frontmatter. `fn` mutates the mapping in place."""
        if not self.has_item(path):
            raise NotFoundError(f"Item '{path}' not found")
        frontmatter, body = split_frontmatter(await self.read(path))
        before = dict(frontmatter)
        fn(frontmatter)
        if frontmatter == before:
            return
        await self.write(path, join_frontmatter(frontmatter, body))
        logger.debug("frontmatter_written", path=path)
