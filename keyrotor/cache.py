"""
Object cache: per-secret and per-store-mapping memo table.

Plugins use it to avoid repeating expensive backend reads within a run.
Keys are CacheKey subclasses: one frozen dataclass per cache purpose, so two
purposes never collide even when their fields happen to match.

Nothing expires. A plugin that mutates remote state must clear any entry
that the mutation makes stale before it reads again.

Usage:
    @dataclass(frozen=True)
    class SecretUpdatedAt(CacheKey):
        name: str

    cache.set(SecretUpdatedAt("TOKEN"), when)
    when, found = cache.get(SecretUpdatedAt("TOKEN"))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CacheKey:
    """Base for tagged cache keys. Subclass once per cache purpose."""


class ObjectCache:
    """Untyped value store keyed by CacheKey. One instance per owner."""

    def __init__(self) -> None:
        self._entries: dict[CacheKey, Any] = {}

    @staticmethod
    def _check(key: object) -> None:
        if not isinstance(key, CacheKey):
            raise TypeError(f"cache keys must be CacheKey instances, got {type(key).__name__}")

    def set(self, key: CacheKey, value: Any) -> None:
        self._check(key)
        self._entries[key] = value

    def get(self, key: CacheKey) -> tuple[Any, bool]:
        """Return (value, found). found distinguishes a stored None from a miss."""
        self._check(key)
        if key in self._entries:
            return self._entries[key], True
        return None, False

    def clear(self, key: CacheKey) -> None:
        self._check(key)
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ObjectCache({len(self._entries)} entries)"
