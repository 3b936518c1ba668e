"""
AWS IAM plugin: rotates and disables IAM user access keys.

The secret name is the IAM user name. IAM allows two access keys per user,
so rotation deletes the older key (when there are two), then creates a new
one. The previous newest key stays active until the disablement engine marks
it inactive.

Rotation output keys:
    AWS_ACCESS_KEY_ID       the new access key id
    AWS_SECRET_ACCESS_KEY   the new secret access key

Options:
    region      AWS region; boto3's default chain when unset
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from keyrotor.cache import CacheKey
from keyrotor.errors import BackendMutationFailed, BackendQueryFailed
from keyrotor.models import PluginConfig, Secret
from keyrotor.plugin.registry import Registry
from keyrotor.secret import SecretMap

logger = logging.getLogger(__name__)

PACKAGE = "keyrotor.plugin.iam"

ACCESS_KEY_NAME = "AWS_ACCESS_KEY_ID"
SECRET_KEY_NAME = "AWS_SECRET_ACCESS_KEY"


@dataclass(frozen=True)
class AccessKeysListed(CacheKey):
    """(oldest, newest) access key metadata for the secret's IAM user."""


def examine_keys(
    keys: list[dict[str, Any]],
) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
    """Return (oldest, newest) by CreateDate. Both are the same key when only one exists."""
    dated = [k for k in keys if k.get("CreateDate") is not None]
    if not dated:
        return None, None
    oldest = min(dated, key=lambda k: k["CreateDate"])
    newest = max(dated, key=lambda k: k["CreateDate"])
    return oldest, newest


class IAMClient:
    """Rotation and disable client for AWS IAM access keys."""

    def __init__(self, region: str | None = None, client: Any = None) -> None:
        self.region = region
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            import boto3
            from botocore.config import Config

            config = Config(connect_timeout=5, read_timeout=10, retries={"max_attempts": 2})
            self._client = boto3.client("iam", region_name=self.region, config=config)
        return self._client

    def name(self) -> str:
        return "AWS IAM"

    # ─── Key metadata ────────────────────────────────────────────────

    def _access_keys(
        self, secret: Secret
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        cached, found = secret.cache.get(AccessKeysListed())
        if found:
            return cached

        try:
            resp = self.client.list_access_keys(UserName=secret.name)
        except Exception as e:
            raise BackendQueryFailed(
                f"failed to list IAM access key metadata for user {secret.name!r}: {e}"
            ) from e

        keys = examine_keys(resp.get("AccessKeyMetadata", []))
        secret.cache.set(AccessKeysListed(), keys)
        return keys

    def last_rotated(self, secret: Secret) -> datetime:
        """Creation date of the newest access key."""
        _, newest = self._access_keys(secret)
        if newest is None:
            raise BackendQueryFailed(f"IAM user {secret.name!r} has no access keys")
        return newest["CreateDate"]

    def rotate_secret(self, secret: Secret) -> SecretMap:
        logger.info("Rotating IAM access key: user=%s", secret.name)
        oldest, newest = self._access_keys(secret)

        if (
            oldest is not None
            and newest is not None
            and oldest["AccessKeyId"] != newest["AccessKeyId"]
        ):
            secret.cache.clear(AccessKeysListed())
            try:
                self.client.delete_access_key(
                    UserName=secret.name, AccessKeyId=oldest["AccessKeyId"]
                )
            except Exception as e:
                raise BackendMutationFailed(
                    f"failed to delete old access key for IAM user {secret.name!r}: {e}"
                ) from e
            logger.info(
                "Deleted old IAM access key: user=%s key_id=%s",
                secret.name,
                oldest["AccessKeyId"],
            )

        secret.cache.clear(AccessKeysListed())
        try:
            resp = self.client.create_access_key(UserName=secret.name)
        except Exception as e:
            raise BackendMutationFailed(
                f"failed to create new access key for IAM user {secret.name!r}: {e}"
            ) from e

        key = resp["AccessKey"]
        return {
            ACCESS_KEY_NAME: key["AccessKeyId"],
            SECRET_KEY_NAME: key["SecretAccessKey"],
        }

    # ─── Disablement ─────────────────────────────────────────────────

    def _old_active_key(self, secret: Secret) -> dict[str, Any] | None:
        oldest, newest = self._access_keys(secret)
        if oldest is None or newest is None:
            return None
        if oldest["AccessKeyId"] == newest["AccessKeyId"]:
            return None
        if oldest.get("Status") != "Active":
            return None
        return oldest

    def last_updated(self, secret: Secret) -> datetime | None:
        """Creation date of the superseded key, if it is still active."""
        old = self._old_active_key(secret)
        if old is None:
            return None
        return old["CreateDate"]

    def disable_secret(self, secret: Secret) -> None:
        old = self._old_active_key(secret)
        if old is None:
            logger.info("No old active IAM access key to disable: user=%s", secret.name)
            return

        logger.info("Disabling old IAM access key: user=%s key_id=%s", secret.name, old["AccessKeyId"])
        secret.cache.clear(AccessKeysListed())
        try:
            self.client.update_access_key(
                UserName=secret.name,
                AccessKeyId=old["AccessKeyId"],
                Status="Inactive",
            )
        except Exception as e:
            raise BackendMutationFailed(
                f"failed to mark old access key inactive for IAM user {secret.name!r}: {e}"
            ) from e


def from_config(pc: PluginConfig) -> IAMClient:
    return IAMClient(region=pc.options.get("region"))


def register(registry: Registry) -> None:
    registry.register(PACKAGE, from_config)
