"""Plugin registry, plugin manager and the built-in backend plugins."""

from keyrotor.plugin.manager import PluginManager
from keyrotor.plugin.registry import Instance, Registry, default_registry

__all__ = ["Instance", "PluginManager", "Registry", "default_registry"]
