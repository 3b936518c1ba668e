"""
Capabilities used by the rotation engine.

RotationClient is implemented by plugins that own a credential (the server
side). StorageClient is implemented by plugins that hold copies of it (the
client side). A single plugin may implement both, or neither plus
DisableClient.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from keyrotor.models import Secret, StorageMapping
from keyrotor.secret import SecretMap


@runtime_checkable
class RotationClient(Protocol):
    def name(self) -> str:
        """Name shown to the administrator in logs and errors."""
        ...

    def last_rotated(self, secret: Secret) -> datetime:
        """When the secret was most recently rotated, as the backend sees it.

        Usually the creation time of the newest credential.
        """
        ...

    def rotate_secret(self, secret: Secret) -> SecretMap:
        """Rotate now and return every new value.

        The returned keys should be stable for the plugin and documented, so
        they can be remapped per store in the configuration. Raise on failure.
        """
        ...


@runtime_checkable
class StorageClient(Protocol):
    def name(self) -> str:
        """Name shown to the administrator in logs and errors."""
        ...

    def last_saved(self, store: StorageMapping, key: str) -> datetime:
        """When `key` was last written to the store.

        Called once per store-side name in the mapping's key map. Must raise
        keyrotor.errors.KeyNotFound if the key has never been stored.
        """
        ...

    def save_keys(self, store: StorageMapping, values: SecretMap) -> None:
        """Write freshly rotated values, already remapped for this store.

        Called once per rotation. Raise on failure.
        """
        ...
