from collections.abc import Callable
from typing import Any

import structlog
import yaml

from viewcount.core.core import Service
from viewcount.errors import NotFoundError, StoreIOError

logger = structlog.get_logger(__name__)


class FrontmatterService(Service):
    """Mirrors counter values into each item's own frontmatter block.

    Writes are best effort: a failure is logged and reported to the user but
    never propagates, since the counter snapshot stays authoritative and the
    next sync repairs any divergence.
    """

    @property
    def property_name(self) -> str:
        return self.core.services.settings.settings.view_count_property_name

    async def write_count(self, path: str, value: int, property_name: str | None = None) -> bool:
        """Set the counter property on an item. Returns True on success."""
        name = property_name or self.property_name

        def update(frontmatter: dict[str, Any]) -> None:
            frontmatter[name] = value

        logger.debug("updating_view_count_property", path=path, property_name=name, view_count=value)
        return await self._process(path, update)

    async def clear(self, path: str, property_name: str | None = None) -> bool:
        """Remove the counter property from an item if present. Returns True on success."""
        name = property_name or self.property_name

        def remove(frontmatter: dict[str, Any]) -> None:
            frontmatter.pop(name, None)

        logger.debug("deleting_view_count_property", path=path, property_name=name)
        return await self._process(path, remove)

    async def read_value(self, path: str, property_name: str) -> Any:
        """Read a single frontmatter property, or None if the item or property is missing."""
        try:
            frontmatter = await self.vault.read_frontmatter(path)
        except NotFoundError:
            return None
        return frontmatter.get(property_name)

    async def _process(self, path: str, fn: Callable[[dict[str, Any]], None]) -> bool:
        try:
            await self.vault.process_frontmatter(path, fn)
        except NotFoundError:
            logger.debug("frontmatter_item_missing", path=path)
            return False
        except StoreIOError as e:
            logger.exception("frontmatter_write_failed", path=path, error=str(e))
            self.core.notifier.notify(f"error updating frontmatter of {path}")
            return False
        except yaml.YAMLError as e:
            logger.warning("frontmatter_invalid_yaml", path=path, error=str(e))
            self.core.notifier.notify(f"cannot parse frontmatter of {path}")
            return False
        return True
