"""
Error types for keyrotor.

Everything a run can recover from derives from KeyRotorError. The engines
catch these (and backend exceptions) at their isolation points, log them,
and move on to the next store or secret. PluginRegistrationError is the
exception: it signals a programming mistake at startup and is never caught.
"""

from __future__ import annotations


class KeyRotorError(Exception):
    """Base class for recoverable keyrotor errors."""


# ─── Plugins ─────────────────────────────────────────────────────────


class PluginError(KeyRotorError):
    """A plugin could not be resolved into a usable instance."""


class PluginNotFound(PluginError):
    """No factory is registered for the requested package."""

    def __init__(self, package: str):
        super().__init__(f"no plugin found for package {package!r}")
        self.package = package


class PluginConfigNotFound(PluginError):
    """The plugin name is not present in the configuration."""

    def __init__(self, name: str):
        super().__init__(f"no plugin configuration found for name {name!r}")
        self.name = name


class PluginConstructionFailed(PluginError):
    """The factory raised, or returned something that is not a plugin instance."""

    def __init__(self, name: str, package: str, reason: BaseException):
        super().__init__(
            f"error while building plugin {name!r} in package {package!r}: {reason}"
        )
        self.name = name
        self.package = package
        self.reason = reason


class CapabilityNotSatisfied(PluginError):
    """The plugin was built but does not implement the capability asked for."""

    def __init__(self, name: str, capability: str, instance: object):
        super().__init__(
            f"expected {capability} plugin for client named {name!r}, "
            f"but got {type(instance).__name__} instead"
        )
        self.name = name
        self.capability = capability


class PluginRegistrationError(RuntimeError):
    """A package id was registered twice. Fatal, raised at startup."""


# ─── Backends ────────────────────────────────────────────────────────


class BackendError(KeyRotorError):
    """A call to a remote backend failed."""


class BackendQueryFailed(BackendError):
    """A read (timestamp or listing) against a backend failed."""


class BackendMutationFailed(BackendError):
    """A rotate, disable or save call against a backend failed."""


class KeyNotFound(BackendQueryFailed):
    """The store has no record of the requested key.

    Not a failure for rotation decisions: it means the key was never saved.
    """

    def __init__(self, store: str, key: str):
        super().__init__(f"key {key!r} not found in store {store!r}")
        self.store = store
        self.key = key


# ─── Configuration ───────────────────────────────────────────────────


class KeyMapError(KeyRotorError, ValueError):
    """Remapping would produce two values under the same key."""


class ConfigError(KeyRotorError):
    """The configuration cannot be loaded or is invalid."""


class AggregateError(KeyRotorError):
    """Several errors reported together."""

    def __init__(self, errors: list[Exception]):
        super().__init__("; ".join(str(e) for e in errors))
        self.errors = list(errors)
