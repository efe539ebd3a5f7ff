from __future__ import annotations

import importlib
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, cast

from viewcount import utils
from viewcount.config import Config
from viewcount.core.vault import Notifier, Vault

if TYPE_CHECKING:
    from viewcount.core.modules.counter.service import CounterService
    from viewcount.core.modules.frontmatter.service import FrontmatterService
    from viewcount.core.modules.settings.service import SettingsService


class Service:
    """Base class for services with direct vault access."""

    def __init__(self, vault: Vault) -> None:
        self.vault = vault
        self._core: Core | None = None

    async def on_start(self) -> None:
        """Initialize service on startup."""

    async def on_stop(self) -> None:
        """Cleanup service on shutdown."""

    @property
    def core(self) -> Core:
        """Get the core application context."""
        if self._core is None:
            raise RuntimeError("Core not set for service")
        return self._core

    def set_core(self, core: Core) -> None:
        """Set the core application context."""
        self._core = core


class Services:
    """Service registry that initializes services in dependency order."""

    settings: SettingsService
    frontmatter: FrontmatterService
    counter: CounterService

    def __init__(self, vault: Vault) -> None:
        self._services: list[Service] = []
        self._vault = vault

        # Service configuration: (attribute_name, module_path, class_name)
        # Order matters: settings migrations must finish before the counter store loads
        service_configs = [
            ("settings", "viewcount.core.modules.settings.service", "SettingsService"),
            ("frontmatter", "viewcount.core.modules.frontmatter.service", "FrontmatterService"),
            ("counter", "viewcount.core.modules.counter.service", "CounterService"),
        ]

        for attr_name, module_path, class_name in service_configs:
            module = importlib.import_module(module_path)
            service_class = cast(type[Service], getattr(module, class_name))
            service_instance = service_class(vault)
            setattr(self, attr_name, service_instance)
            self._services.append(service_instance)

    def set_core(self, core: Core) -> None:
        """Set core reference for all services."""
        for service in self._services:
            service.set_core(core)

    async def start_all(self) -> None:
        for service in self._services:
            await service.on_start()

    async def stop_all(self) -> None:
        for service in reversed(self._services):
            await service.on_stop()


class Core:
    """Container providing config, vault, clock, notices and all service instances."""

    config: Config
    vault: Vault
    notifier: Notifier
    services: Services

    def __init__(self, config: Config, clock: Callable[[], int] = utils.now_millis) -> None:
        self.config = config
        self.clock = clock  # Milliseconds since the epoch
        self.vault = Vault(config.vault_path, config.config_dir)
        self.notifier = Notifier()
        self.services = Services(self.vault)
        self.services.set_core(self)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Manage lifecycle: migrate and load on entry, flush on exit."""
        await self.on_start()
        try:
            yield
        finally:
            await self.on_stop()

    async def on_start(self) -> None:
        await self.services.start_all()

    async def on_stop(self) -> None:
        await self.services.stop_all()
