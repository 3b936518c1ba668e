"""
Capability used by the disablement engine.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from keyrotor.models import Secret


@runtime_checkable
class DisableClient(Protocol):
    def name(self) -> str:
        """Name shown to the administrator in logs and errors."""
        ...

    def last_updated(self, secret: Secret) -> datetime | None:
        """Age of the superseded credential that is still active.

        Usually the creation date of the older access key. Return None when
        there is nothing to disable (a single key, or the old key is already
        inactive).
        """
        ...

    def disable_secret(self, secret: Secret) -> None:
        """Deactivate the superseded credential. Raise on failure."""
        ...
