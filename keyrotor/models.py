"""
Data models for keyrotor.

Plain dataclasses, matching the frozen-dataclass style of keyrotor.config.
Secrets and store mappings are mutable only through their private caches;
the cache field is excluded from equality and repr so two secrets with the
same configuration compare equal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import Any

from keyrotor.cache import ObjectCache

DEFAULT_ROTATE_AFTER = timedelta(hours=168)
DEFAULT_DISABLE_AFTER = timedelta(hours=48)


@dataclass(frozen=True)
class PluginConfig:
    """One entry of the `plugins` table: a configured name bound to a package."""

    name: str
    package: str
    options: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass
class StorageMapping:
    """Where one secret gets saved after rotation, and under which key names."""

    storage_client: str  # configured plugin name
    name: str  # store-specific identifier (owner/repo, project slug, ...)
    keys: dict[str, str] = field(default_factory=dict)
    cache: ObjectCache = field(default_factory=ObjectCache, compare=False, repr=False)


@dataclass
class Secret:
    """A logical rotation unit: one server-side credential and its stores."""

    name: str  # server-side identity, e.g. the IAM user name
    storages: list[StorageMapping] = field(default_factory=list)
    cache: ObjectCache = field(default_factory=ObjectCache, compare=False, repr=False)


@dataclass
class SecretSet:
    """Secrets sharing one rotation client, one disable client and one policy."""

    name: str
    rotation_client: str = ""
    disable_client: str = ""
    rotate_after: timedelta = DEFAULT_ROTATE_AFTER
    disable_after: timedelta = DEFAULT_DISABLE_AFTER
    secrets: list[Secret] = field(default_factory=list)


@dataclass
class RotorConfig:
    """The parsed configuration file."""

    plugins: dict[str, PluginConfig] = field(default_factory=dict)
    secret_sets: list[SecretSet] = field(default_factory=list)

    def find_secret_set(self, name: str) -> SecretSet | None:
        for ss in self.secret_sets:
            if ss.name == name:
                return ss
        return None


# ─── Run results ─────────────────────────────────────────────────────


class Outcome(StrEnum):
    CURRENT = "current"  # nothing to do
    DRY_RUN = "dry_run"
    ROTATED = "rotated"
    DISABLED = "disabled"
    PARTIAL = "partial"  # rotated, but at least one store was not updated
    FAILED = "failed"


@dataclass
class SecretResult:
    """What happened to one secret during a batch."""

    secret: str
    outcome: Outcome
    errors: list[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class BatchResult:
    """Ordered per-secret results of a rotate or disable batch."""

    results: list[SecretResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failures(self) -> list[SecretResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def first_error(self) -> Exception | None:
        for r in self.results:
            if r.errors:
                return r.errors[0]
        return None

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def raise_for_failures(self) -> None:
        """Raise the first recorded error, if any."""
        err = self.first_error
        if err is not None:
            raise err
