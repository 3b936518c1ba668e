"""
Plugin manager: builds configured plugins lazily and keeps them.

Instances are cached by configured name, not by package, so one package can
back several differently-configured plugins. Names are matched without
regard to case. A failed build is never cached; the next call tries again.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from keyrotor.errors import CapabilityNotSatisfied, PluginConfigNotFound
from keyrotor.models import PluginConfig
from keyrotor.plugin.registry import Instance, Registry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PluginManager:
    def __init__(self, plugins: dict[str, PluginConfig], registry: Registry):
        self._plugins = {name.lower(): pc for name, pc in plugins.items()}
        self._registry = registry
        self._instances: dict[str, Instance] = {}

    def instance(self, name: str) -> Instance:
        """Return the instance for a configured plugin name, building it on first use."""
        key = name.lower()
        if key in self._instances:
            return self._instances[key]

        pc = self._plugins.get(key)
        if pc is None:
            raise PluginConfigNotFound(name)

        inst = self._registry.build(pc)
        self._instances[key] = inst
        logger.debug("Plugin %r ready: %s", key, inst.name())
        return inst

    def capability(self, name: str, capability: type[T]) -> T:
        """Return the named instance, checked against a capability protocol."""
        inst = self.instance(name)
        if not isinstance(inst, capability):
            raise CapabilityNotSatisfied(name, capability.__name__, inst)
        return inst

    def is_cached(self, name: str) -> bool:
        return name.lower() in self._instances

    def close(self) -> None:
        """Close every built instance that holds resources, then forget them all."""
        for key, inst in self._instances.items():
            close = getattr(inst, "close", None)
            if not callable(close):
                continue
            try:
                close()
            except Exception as e:
                logger.warning("Error closing plugin %r: %s", key, e)
        self._instances.clear()
