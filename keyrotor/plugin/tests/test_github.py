"""Tests for the GitHub Actions secrets plugin (HTTP mocked with httpx.MockTransport)."""

from __future__ import annotations

import base64
import json
from datetime import UTC, datetime

import httpx
import pytest
from nacl import encoding, public

from keyrotor.errors import BackendMutationFailed, BackendQueryFailed, ConfigError, KeyNotFound
from keyrotor.models import PluginConfig, StorageMapping
from keyrotor.plugin.github import (
    GitHubSecretsClient,
    SecretsListed,
    SecretUpdatedAt,
    from_config,
    seal,
)
from keyrotor.rotate.interface import StorageClient


class FakeGitHub:
    """Minimal Actions secrets API backed by a dict."""

    def __init__(self, secrets: dict[str, str] | None = None, page_size: int = 100):
        self.secrets = dict(secrets or {})
        self.page_size = page_size
        self.private_key = public.PrivateKey.generate()
        self.requests: list[httpx.Request] = []
        self.stored: dict[str, dict] = {}
        self.fail_list = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/actions/secrets/public-key"):
            key = self.private_key.public_key.encode(encoding.Base64Encoder).decode()
            return httpx.Response(200, json={"key_id": "kid-1", "key": key})
        if path.endswith("/actions/secrets") and request.method == "GET":
            if self.fail_list:
                return httpx.Response(500, json={"message": "boom"})
            page = int(request.url.params.get("page", "1"))
            names = sorted(self.secrets)
            chunk = names[(page - 1) * self.page_size : page * self.page_size]
            return httpx.Response(
                200,
                json={
                    "total_count": len(names),
                    "secrets": [
                        {"name": n, "created_at": self.secrets[n], "updated_at": self.secrets[n]}
                        for n in chunk
                    ],
                },
            )
        if request.method == "PUT":
            name = path.rsplit("/", 1)[-1]
            self.stored[name] = json.loads(request.content)
            return httpx.Response(201)
        return httpx.Response(404)

    def client(self) -> GitHubSecretsClient:
        http = httpx.Client(
            transport=httpx.MockTransport(self.handler), base_url="https://api.github.com"
        )
        return GitHubSecretsClient(token="t", http=http)

    def decrypt(self, name: str) -> str:
        box = public.SealedBox(self.private_key)
        return box.decrypt(base64.b64decode(self.stored[name]["encrypted_value"])).decode()


@pytest.fixture
def store():
    return StorageMapping("github", "example/project")


class TestLastSaved:
    def test_reads_updated_at(self, store):
        gh = FakeGitHub({"DEPLOY_KEY_ID": "2024-05-01T10:00:00Z"})
        client = gh.client()
        assert isinstance(client, StorageClient)
        assert client.last_saved(store, "DEPLOY_KEY_ID") == datetime(2024, 5, 1, 10, tzinfo=UTC)

    def test_listing_is_cached(self, store):
        gh = FakeGitHub({"A": "2024-05-01T10:00:00Z", "B": "2024-05-02T10:00:00Z"})
        client = gh.client()
        client.last_saved(store, "A")
        client.last_saved(store, "B")
        with pytest.raises(KeyNotFound):
            client.last_saved(store, "C")
        assert len(gh.requests) == 1
        assert store.cache.get(SecretsListed()) == (True, True)

    def test_missing_key(self, store):
        client = FakeGitHub({}).client()
        with pytest.raises(KeyNotFound, match="'MISSING' not found in store 'example/project'"):
            client.last_saved(store, "MISSING")

    def test_paginates(self, store):
        gh = FakeGitHub({f"S{i}": "2024-05-01T10:00:00Z" for i in range(5)}, page_size=2)
        client = gh.client()
        assert client.last_saved(store, "S4") == datetime(2024, 5, 1, 10, tzinfo=UTC)
        assert len(gh.requests) == 3

    def test_http_error(self, store):
        gh = FakeGitHub({})
        gh.fail_list = True
        with pytest.raises(BackendQueryFailed):
            gh.client().last_saved(store, "A")

    def test_bad_store_name(self):
        client = FakeGitHub({}).client()
        with pytest.raises(ConfigError, match="owner/repo"):
            client.last_saved(StorageMapping("github", "no-slash"), "A")


class TestSaveKeys:
    def test_seals_and_puts_each_value(self, store):
        gh = FakeGitHub({})
        client = gh.client()

        client.save_keys(store, {"DEPLOY_KEY_ID": "AKIA", "DEPLOY_SECRET": "s3cret"})

        assert gh.stored["DEPLOY_KEY_ID"]["key_id"] == "kid-1"
        assert gh.decrypt("DEPLOY_KEY_ID") == "AKIA"
        assert gh.decrypt("DEPLOY_SECRET") == "s3cret"
        cached, found = store.cache.get(SecretUpdatedAt("DEPLOY_SECRET"))
        assert found
        assert cached.tzinfo is not None

    def test_put_failure(self, store):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("public-key"):
                key = public.PrivateKey.generate().public_key.encode(encoding.Base64Encoder)
                return httpx.Response(200, json={"key_id": "k", "key": key.decode()})
            return httpx.Response(403, json={"message": "forbidden"})

        http = httpx.Client(transport=httpx.MockTransport(handler), base_url="https://api.github.com")
        client = GitHubSecretsClient(token="t", http=http)
        with pytest.raises(BackendMutationFailed, match="'A'"):
            client.save_keys(store, {"A": "1"})


class TestSeal:
    def test_roundtrip_with_private_key(self):
        sk = public.PrivateKey.generate()
        pk = sk.public_key.encode(encoding.Base64Encoder).decode()
        sealed = seal(pk, "value")
        assert public.SealedBox(sk).decrypt(base64.b64decode(sealed)) == b"value"


class TestFromConfig:
    def test_requires_token(self, clean_env):
        with pytest.raises(ConfigError, match="GITHUB_TOKEN"):
            from_config(PluginConfig("github", "keyrotor.plugin.github"))

    def test_custom_token_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("MY_GH", "abc")
        client = from_config(
            PluginConfig(
                "github",
                "keyrotor.plugin.github",
                {"token_env": "MY_GH", "base_url": "https://ghe.example.com/api/v3/"},
            )
        )
        assert client.base_url == "https://ghe.example.com/api/v3"
        client.close()
