"""
Root-level shared test fixtures.

Inherited by the subpackage test suites (keyrotor/*/tests) and the
top-level tests/ directory.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from keyrotor.config import reset_settings
from keyrotor.errors import KeyNotFound
from keyrotor.models import PluginConfig, Secret, StorageMapping
from keyrotor.plugin.manager import PluginManager
from keyrotor.plugin.registry import Registry

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


class FakeRotationClient:
    def __init__(self, rotated=None, values=None, error=None):
        self.rotated = rotated if rotated is not None else NOW - timedelta(days=1)
        self.values = values if values is not None else {"alpha": "one", "beta": "two"}
        self.error = error
        self.rotate_error = None
        self.rotated_secrets: list[str] = []

    def name(self) -> str:
        return "fake rotation"

    def last_rotated(self, secret: Secret) -> datetime:
        if self.error is not None:
            raise self.error
        return self.rotated

    def rotate_secret(self, secret: Secret) -> dict[str, str]:
        if self.rotate_error is not None:
            raise self.rotate_error
        self.rotated_secrets.append(secret.name)
        return dict(self.values)


class FakeStorageClient:
    """In-memory store. saved maps (store name, key) to a datetime or an exception."""

    def __init__(self, saved=None, save_error=None):
        self.saved = dict(saved or {})
        self.save_error = save_error
        self.writes: list[tuple[str, dict[str, str]]] = []

    def name(self) -> str:
        return "fake storage"

    def last_saved(self, store: StorageMapping, key: str) -> datetime:
        value = self.saved.get((store.name, key))
        if value is None:
            raise KeyNotFound(store.name, key)
        if isinstance(value, Exception):
            raise value
        return value

    def save_keys(self, store: StorageMapping, values: dict[str, str]) -> None:
        if self.save_error is not None:
            raise self.save_error
        self.writes.append((store.name, dict(values)))


class FakeDisableClient:
    def __init__(self, updated=None, error=None, disable_error=None):
        self.updated = updated
        self.error = error
        self.disable_error = disable_error
        self.disabled: list[str] = []

    def name(self) -> str:
        return "fake disable"

    def last_updated(self, secret: Secret) -> datetime | None:
        if self.error is not None:
            raise self.error
        return self.updated

    def disable_secret(self, secret: Secret) -> None:
        if self.disable_error is not None:
            raise self.disable_error
        self.disabled.append(secret.name)


class NamedOnly:
    """An instance that implements no capability."""

    def name(self) -> str:
        return "named only"


@pytest.fixture(autouse=True)
def _reset_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that leak between tests."""
    for key in [
        "KEYROTOR_CONFIG",
        "KEYROTOR_DRY_RUN",
        "KEYROTOR_VERBOSE",
        "KEYROTOR_ROTATE_AFTER",
        "KEYROTOR_DISABLE_AFTER",
        "GITHUB_TOKEN",
        "CIRCLECI_TOKEN",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fakes():
    """The fake plugin classes, for tests that construct their own."""
    return SimpleNamespace(
        Rotation=FakeRotationClient,
        Storage=FakeStorageClient,
        Disable=FakeDisableClient,
        NamedOnly=NamedOnly,
        NOW=NOW,
    )


@pytest.fixture
def make_plugins():
    """Build a PluginManager serving fixed instances under the given names."""

    def _make(instances: dict[str, object]) -> PluginManager:
        registry = Registry()
        plugins = {}
        for name, inst in instances.items():
            package = f"tests.fake.{name}"
            registry.register(package, lambda pc, inst=inst: inst)
            plugins[name] = PluginConfig(name=name, package=package)
        return PluginManager(plugins, registry)

    return _make


@pytest.fixture
def make_secret():
    def _make(name: str = "Matthew", stores: list[tuple[str, str, dict[str, str]]] | None = None):
        storages = [StorageMapping(client, store, dict(keys)) for client, store, keys in stores or []]
        return Secret(name=name, storages=storages)

    return _make
