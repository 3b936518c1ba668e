"""
Plugin registry: package id -> factory.

The registry is an explicit value owned by whoever bootstraps the process
(the CLI, or a test). Plugin modules expose a `register(registry)` function
that adds their factory under their module path.

Usage:
    from keyrotor.plugin.registry import Registry, default_registry

    registry = default_registry()          # built-in plugins
    inst = registry.build(PluginConfig(name="iam", package="keyrotor.plugin.iam"))
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from keyrotor.errors import PluginConstructionFailed, PluginNotFound, PluginRegistrationError
from keyrotor.models import PluginConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class Instance(Protocol):
    """What every constructed plugin provides.

    Plugins also implement one or more capabilities (RotationClient,
    StorageClient, DisableClient); those are checked at the point of use.
    """

    def name(self) -> str:
        """Human-readable identity used in logs and errors."""
        ...


Factory = Callable[[PluginConfig], Instance]


class Registry:
    """Maps plugin package ids to the factories that build them."""

    def __init__(self) -> None:
        self._factories: dict[str, Factory] = {}

    def register(self, package: str, factory: Factory) -> None:
        """Add a factory. Registering the same package twice is fatal."""
        if package in self._factories:
            raise PluginRegistrationError(f"plugin package {package!r} is already registered")
        self._factories[package] = factory

    def lookup(self, package: str) -> Factory | None:
        return self._factories.get(package)

    def packages(self) -> list[str]:
        return sorted(self._factories)

    def build(self, config: PluginConfig) -> Instance:
        """Construct an instance for the given plugin configuration.

        Raises PluginNotFound if nothing is registered for config.package,
        PluginConstructionFailed if the factory raises or returns a non-instance.
        """
        factory = self.lookup(config.package)
        if factory is None:
            raise PluginNotFound(config.package)

        try:
            inst = factory(config)
        except Exception as e:
            raise PluginConstructionFailed(config.name, config.package, e) from e

        if not isinstance(inst, Instance):
            raise PluginConstructionFailed(
                config.name,
                config.package,
                TypeError(f"factory returned {type(inst).__name__}, not a plugin instance"),
            )

        logger.debug("Built plugin %s (%s) from %s", config.name, inst.name(), config.package)
        return inst


def default_registry() -> Registry:
    """A fresh registry with the built-in plugins registered."""
    from keyrotor.plugin import circleci, github, iam

    registry = Registry()
    for module in (iam, github, circleci):
        module.register(registry)
    return registry
