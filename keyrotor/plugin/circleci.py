"""
CircleCI plugin: stores rotated values as project environment variables.

The store mapping name is the project slug (e.g. gh/example/project).
CircleCI does not report when a variable was last written, so a variable
that exists is reported as saved "now"; only missing variables trigger
rotation from the store side.

Options:
    token_env   environment variable holding the API token (CIRCLECI_TOKEN)
    base_url    API root (https://circleci.com/api/v2)
    timeout     request timeout in seconds (30)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from keyrotor.cache import CacheKey
from keyrotor.errors import BackendMutationFailed, BackendQueryFailed, ConfigError, KeyNotFound
from keyrotor.models import PluginConfig, StorageMapping
from keyrotor.plugin.registry import Registry
from keyrotor.secret import SecretMap

logger = logging.getLogger(__name__)

PACKAGE = "keyrotor.plugin.circleci"

DEFAULT_BASE_URL = "https://circleci.com/api/v2"
DEFAULT_TOKEN_ENV = "CIRCLECI_TOKEN"


@dataclass(frozen=True)
class EnvVarsSeen(CacheKey):
    """Names of the variables known to exist on the project."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CircleCIEnvClient:
    """Storage client for CircleCI project environment variables."""

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http: httpx.Client | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http or httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Circle-Token": token, "Accept": "application/json"},
        )
        self._clock = clock

    def name(self) -> str:
        return "CircleCI environment variables"

    def close(self) -> None:
        self._http.close()

    def _list_env_vars(self, store: StorageMapping) -> set[str]:
        names: set[str] = set()
        params: dict[str, str] = {}
        while True:
            try:
                resp = self._http.get(f"/project/{store.name}/envvar", params=params)
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise BackendQueryFailed(
                    f"failed to list CircleCI environment variables for {store.name!r}: {e}"
                ) from e

            data = resp.json()
            names.update(item["name"] for item in data.get("items", []))
            token = data.get("next_page_token")
            if not token:
                return names
            params = {"page-token": token}

    def last_saved(self, store: StorageMapping, key: str) -> datetime:
        seen, found = store.cache.get(EnvVarsSeen())
        if not found:
            seen = self._list_env_vars(store)
            store.cache.set(EnvVarsSeen(), seen)

        if key in seen:
            return self._clock()
        raise KeyNotFound(store.name, key)

    def save_keys(self, store: StorageMapping, values: SecretMap) -> None:
        seen, found = store.cache.get(EnvVarsSeen())
        seen = set(seen) if found else set()

        for key, value in values.items():
            logger.debug("Updating CircleCI environment variable: store=%s name=%s", store.name, key)
            try:
                resp = self._http.post(
                    f"/project/{store.name}/envvar",
                    json={"name": key, "value": value},
                )
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise BackendMutationFailed(
                    f"failed to save CircleCI environment variable {key!r} for {store.name!r}: {e}"
                ) from e
            seen.add(key)
            store.cache.set(EnvVarsSeen(), seen)


def from_config(pc: PluginConfig) -> CircleCIEnvClient:
    token_env = pc.options.get("token_env", DEFAULT_TOKEN_ENV)
    token = os.environ.get(token_env, "")
    if not token:
        raise ConfigError(f"environment variable {token_env} is not set")
    return CircleCIEnvClient(
        token=token,
        base_url=pc.options.get("base_url", DEFAULT_BASE_URL),
        timeout=float(pc.options.get("timeout", 30.0)),
    )


def register(registry: Registry) -> None:
    registry.register(PACKAGE, from_config)
