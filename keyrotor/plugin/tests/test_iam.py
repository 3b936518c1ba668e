"""Tests for the AWS IAM plugin (boto3 client mocked)."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from keyrotor.disable.interface import DisableClient
from keyrotor.errors import BackendMutationFailed, BackendQueryFailed
from keyrotor.models import PluginConfig, Secret
from keyrotor.plugin.iam import (
    ACCESS_KEY_NAME,
    SECRET_KEY_NAME,
    AccessKeysListed,
    IAMClient,
    examine_keys,
    from_config,
)
from keyrotor.rotate.interface import RotationClient

OLD = datetime(2024, 1, 1, tzinfo=UTC)
NEW = datetime(2024, 5, 1, tzinfo=UTC)


def _key(key_id: str, created: datetime, status: str = "Active") -> dict:
    return {"AccessKeyId": key_id, "CreateDate": created, "Status": status, "UserName": "ci"}


def _client(*keys) -> tuple[IAMClient, MagicMock]:
    boto = MagicMock()
    boto.list_access_keys.return_value = {"AccessKeyMetadata": list(keys)}
    boto.create_access_key.return_value = {
        "AccessKey": {"AccessKeyId": "AKIANEW", "SecretAccessKey": "s3cret"}
    }
    return IAMClient(client=boto), boto


class TestExamineKeys:
    def test_two_keys(self):
        old, new = _key("A", OLD), _key("B", NEW)
        assert examine_keys([new, old]) == (old, new)

    def test_one_key(self):
        only = _key("A", OLD)
        assert examine_keys([only]) == (only, only)

    def test_no_keys(self):
        assert examine_keys([]) == (None, None)


class TestIAMClient:
    def test_implements_both_capabilities(self):
        client, _ = _client()
        assert isinstance(client, RotationClient)
        assert isinstance(client, DisableClient)

    def test_last_rotated_is_newest_key(self):
        client, boto = _client(_key("A", OLD), _key("B", NEW))
        secret = Secret("ci")
        assert client.last_rotated(secret) == NEW
        assert client.last_rotated(secret) == NEW
        boto.list_access_keys.assert_called_once_with(UserName="ci")

    def test_last_rotated_without_keys(self):
        client, _ = _client()
        with pytest.raises(BackendQueryFailed, match="no access keys"):
            client.last_rotated(Secret("ci"))

    def test_list_failure_is_wrapped(self):
        client, boto = _client()
        boto.list_access_keys.side_effect = RuntimeError("throttled")
        with pytest.raises(BackendQueryFailed, match="throttled"):
            client.last_rotated(Secret("ci"))

    def test_rotate_deletes_oldest_then_creates(self):
        client, boto = _client(_key("A", OLD), _key("B", NEW))
        secret = Secret("ci")

        values = client.rotate_secret(secret)

        boto.delete_access_key.assert_called_once_with(UserName="ci", AccessKeyId="A")
        boto.create_access_key.assert_called_once_with(UserName="ci")
        assert values == {ACCESS_KEY_NAME: "AKIANEW", SECRET_KEY_NAME: "s3cret"}
        assert secret.cache.get(AccessKeysListed()) == (None, False)

    def test_rotate_single_key_does_not_delete(self):
        client, boto = _client(_key("A", OLD))
        client.rotate_secret(Secret("ci"))
        boto.delete_access_key.assert_not_called()
        boto.create_access_key.assert_called_once()

    def test_rotate_create_failure(self):
        client, boto = _client(_key("A", OLD))
        boto.create_access_key.side_effect = RuntimeError("LimitExceeded")
        with pytest.raises(BackendMutationFailed, match="LimitExceeded"):
            client.rotate_secret(Secret("ci"))

    def test_last_updated_old_active_key(self):
        client, _ = _client(_key("A", OLD), _key("B", NEW))
        assert client.last_updated(Secret("ci")) == OLD

    def test_last_updated_single_key_is_none(self):
        client, _ = _client(_key("A", OLD))
        assert client.last_updated(Secret("ci")) is None

    def test_last_updated_inactive_old_key_is_none(self):
        client, _ = _client(_key("A", OLD, status="Inactive"), _key("B", NEW))
        assert client.last_updated(Secret("ci")) is None

    def test_disable_marks_old_key_inactive(self):
        client, boto = _client(_key("A", OLD), _key("B", NEW))
        secret = Secret("ci")
        client.disable_secret(secret)
        boto.update_access_key.assert_called_once_with(
            UserName="ci", AccessKeyId="A", Status="Inactive"
        )
        assert secret.cache.get(AccessKeysListed()) == (None, False)

    def test_disable_with_single_key_is_noop(self):
        client, boto = _client(_key("A", OLD))
        client.disable_secret(Secret("ci"))
        boto.update_access_key.assert_not_called()


class TestFromConfig:
    def test_region_option(self):
        client = from_config(PluginConfig("iam", "keyrotor.plugin.iam", {"region": "us-west-2"}))
        assert client.region == "us-west-2"
        assert client.name() == "AWS IAM"
