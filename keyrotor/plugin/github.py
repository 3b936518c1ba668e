"""
GitHub Actions secrets plugin: stores rotated values as repository secrets.

The store mapping name is the repository in owner/repo form. Values are
encrypted client-side with the repository's public key (a libsodium sealed
box) before upload, as the Actions secrets API requires.

Options:
    token_env   environment variable holding the API token (GITHUB_TOKEN)
    base_url    API root (https://api.github.com)
    timeout     request timeout in seconds (30)
"""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
from nacl import encoding, public

from keyrotor.cache import CacheKey
from keyrotor.errors import BackendMutationFailed, BackendQueryFailed, ConfigError, KeyNotFound
from keyrotor.models import PluginConfig, StorageMapping
from keyrotor.plugin.registry import Registry
from keyrotor.secret import SecretMap

logger = logging.getLogger(__name__)

PACKAGE = "keyrotor.plugin.github"

DEFAULT_BASE_URL = "https://api.github.com"
DEFAULT_TOKEN_ENV = "GITHUB_TOKEN"
PAGE_SIZE = 100


@dataclass(frozen=True)
class SecretUpdatedAt(CacheKey):
    name: str


@dataclass(frozen=True)
class SecretsListed(CacheKey):
    """Marks that every secret of the repository has been cached."""


def seal(public_key: str, value: str) -> str:
    """Encrypt value for a base64 public key; returns the base64 sealed box."""
    pk = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder)
    sealed = public.SealedBox(pk).encrypt(value.encode("utf-8"))
    return base64.b64encode(sealed).decode("utf-8")


def _parse_time(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


class GitHubSecretsClient:
    """Storage client for GitHub Actions repository secrets."""

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http or httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    def name(self) -> str:
        return "github action secrets"

    def close(self) -> None:
        self._http.close()

    @staticmethod
    def _repo(store: StorageMapping) -> str:
        owner, _, repo = store.name.partition("/")
        if not owner or not repo:
            raise ConfigError(f"github store name {store.name!r} is not in owner/repo form")
        return f"{owner}/{repo}"

    def _list_secrets(self, store: StorageMapping) -> list[dict[str, Any]]:
        repo = self._repo(store)
        secrets: list[dict[str, Any]] = []
        page = 1
        while True:
            try:
                resp = self._http.get(
                    f"/repos/{repo}/actions/secrets",
                    params={"per_page": PAGE_SIZE, "page": page},
                )
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise BackendQueryFailed(
                    f"failed to list github action secrets for {repo!r}: {e}"
                ) from e

            data = resp.json()
            batch = data.get("secrets", [])
            secrets.extend(batch)
            if not batch or len(secrets) >= data.get("total_count", 0):
                return secrets
            page += 1

    def last_saved(self, store: StorageMapping, key: str) -> datetime:
        cached, found = store.cache.get(SecretUpdatedAt(key))
        if found:
            return cached

        _, listed = store.cache.get(SecretsListed())
        if not listed:
            for s in self._list_secrets(store):
                store.cache.set(SecretUpdatedAt(s["name"]), _parse_time(s["updated_at"]))
            store.cache.set(SecretsListed(), True)

            cached, found = store.cache.get(SecretUpdatedAt(key))
            if found:
                return cached

        raise KeyNotFound(store.name, key)

    def save_keys(self, store: StorageMapping, values: SecretMap) -> None:
        repo = self._repo(store)
        try:
            resp = self._http.get(f"/repos/{repo}/actions/secrets/public-key")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise BackendMutationFailed(
                f"failed to retrieve github public key for {repo!r}: {e}"
            ) from e
        pub = resp.json()

        for key, value in values.items():
            logger.debug("Updating github action secret: store=%s secret=%s", repo, key)
            try:
                encrypted = seal(pub["key"], value)
            except Exception as e:
                raise BackendMutationFailed(
                    f"failed to encrypt github action secret {key!r} for {repo!r}: {e}"
                ) from e

            try:
                resp = self._http.put(
                    f"/repos/{repo}/actions/secrets/{key}",
                    json={"encrypted_value": encrypted, "key_id": pub["key_id"]},
                )
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise BackendMutationFailed(
                    f"failed to create or update github action secret {key!r} for {repo!r}: {e}"
                ) from e

            store.cache.set(SecretUpdatedAt(key), datetime.now(UTC))


def from_config(pc: PluginConfig) -> GitHubSecretsClient:
    token_env = pc.options.get("token_env", DEFAULT_TOKEN_ENV)
    token = os.environ.get(token_env, "")
    if not token:
        raise ConfigError(f"environment variable {token_env} is not set")
    return GitHubSecretsClient(
        token=token,
        base_url=pc.options.get("base_url", DEFAULT_BASE_URL),
        timeout=float(pc.options.get("timeout", 30.0)),
    )


def register(registry: Registry) -> None:
    registry.register(PACKAGE, from_config)
