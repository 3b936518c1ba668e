"""
Rotation engine.

For each secret in a secret set: decide whether rotation is due, ask the
rotation client for new values, then save those values (remapped per store)
into every configured store.

The decision is recomputed from live backend state on every run. It is
deliberately conservative: if the server-side credential or any store
cannot be read, the secret is not rotated.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from keyrotor.errors import BackendMutationFailed, KeyNotFound, PluginError
from keyrotor.models import BatchResult, Outcome, Secret, SecretResult, StorageMapping
from keyrotor.plugin.manager import PluginManager
from keyrotor.rotate.interface import RotationClient, StorageClient
from keyrotor.secret import SecretMap, remap_keys

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RotationManager:
    def __init__(
        self,
        client: RotationClient,
        rotate_after: timedelta,
        dry_run: bool,
        plugins: PluginManager,
        secrets: list[Secret],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.rotate_after = rotate_after
        self.dry_run = dry_run
        self.plugins = plugins
        self.secrets = secrets
        self._clock = clock

    def _find_storage(self, name: str) -> StorageClient:
        return self.plugins.capability(name, StorageClient)

    def needs_rotation(self, secret: Secret) -> bool:
        """True if the secret is older than rotate_after, or any store lags behind it.

        Short-circuits on the first positive answer. Any error reading a
        store makes the answer False, even if a later store would have said
        True. A key the store has never saved counts as lagging.
        """
        # TODO: resume rotation when a store has failed verification for
        # longer than rotate_after, instead of delaying indefinitely.
        try:
            rotated = self.client.last_rotated(secret)
        except Exception as e:
            logger.warning(
                "Error checking last rotation date; skipping: secret=%s client=%s error=%s",
                secret.name,
                self.client.name(),
                e,
            )
            return False

        now = self._clock()
        if now - rotated > self.rotate_after:
            logger.debug(
                "Secret is out of date and requires rotation: secret=%s client=%s "
                "now=%s rotated=%s rotate_after=%s",
                secret.name,
                self.client.name(),
                now.isoformat(),
                rotated.isoformat(),
                self.rotate_after,
            )
            return True

        for sm in secret.storages:
            try:
                store = self._find_storage(sm.storage_client)
            except PluginError as e:
                logger.warning(
                    "Error loading storage plugin; rotation prevented: secret=%s store=%s error=%s",
                    secret.name,
                    sm.storage_client,
                    e,
                )
                return False

            for key in sm.keys.values():
                try:
                    saved = store.last_saved(sm, key)
                except KeyNotFound:
                    logger.debug(
                        "Store has never saved key; rotation required: secret=%s store=%s key=%s",
                        secret.name,
                        store.name(),
                        key,
                    )
                    return True
                except Exception as e:
                    logger.warning(
                        "Error checking last storage date; rotation prevented: "
                        "secret=%s store=%s key=%s error=%s",
                        secret.name,
                        store.name(),
                        key,
                        e,
                    )
                    return False

                if saved < rotated:
                    logger.debug(
                        "Stored copy is older than most recent rotation: secret=%s store=%s "
                        "key=%s rotated=%s saved=%s",
                        secret.name,
                        store.name(),
                        key,
                        rotated.isoformat(),
                        saved.isoformat(),
                    )
                    return True

        return False

    def rotate_secret(
        self, secret: Secret, cancel: threading.Event | None = None
    ) -> SecretResult:
        """Rotate one secret if needed and save the new values to every store.

        Raises BackendMutationFailed if the rotation itself fails. Failures
        saving to a store are logged and recorded on the result; the
        remaining stores are still updated.
        """
        if not self.needs_rotation(secret):
            return SecretResult(secret.name, Outcome.CURRENT)

        if self.dry_run:
            logger.info(
                "Dry run: secret would be rotated: secret=%s client=%s",
                secret.name,
                self.client.name(),
            )
            for sm in secret.storages:
                logger.info(
                    "Dry run: secret would be stored: secret=%s store=%s name=%s",
                    secret.name,
                    sm.storage_client,
                    sm.name,
                )
            return SecretResult(secret.name, Outcome.DRY_RUN)

        logger.info("Rotating secret=%s client=%s", secret.name, self.client.name())
        try:
            values = self.client.rotate_secret(secret)
        except Exception as e:
            raise BackendMutationFailed(
                f"failed to rotate secret {secret.name!r} with {self.client.name()}: {e}"
            ) from e

        result = SecretResult(secret.name, Outcome.ROTATED)
        for sm in secret.storages:
            if cancel is not None and cancel.is_set():
                logger.warning(
                    "Cancelled before all stores were updated: secret=%s next_store=%s",
                    secret.name,
                    sm.name,
                )
                result.errors.append(
                    BackendMutationFailed(f"cancelled before saving to store {sm.name!r}")
                )
                break
            err = self._save(secret, sm, values)
            if err is not None:
                result.errors.append(err)

        if result.errors:
            result.outcome = Outcome.PARTIAL
        return result

    def _save(self, secret: Secret, sm: StorageMapping, values: SecretMap) -> Exception | None:
        """Remap and save into one store. Returns the error instead of raising."""
        try:
            store = self._find_storage(sm.storage_client)
            remapped = remap_keys(sm.keys, values)
            store.save_keys(sm, remapped)
        except Exception as e:
            logger.error(
                "Failed to update store with newly rotated secret: secret=%s store=%s "
                "name=%s error=%s",
                secret.name,
                sm.storage_client,
                sm.name,
                e,
            )
            return e

        logger.info(
            "Saved rotated secret: secret=%s store=%s name=%s keys=%s",
            secret.name,
            store.name(),
            sm.name,
            sorted(remapped),
        )
        return None

    def rotate_all(self, cancel: threading.Event | None = None) -> BatchResult:
        """Rotate every configured secret that needs it, in configured order.

        A failure on one secret is logged and the batch moves on.
        """
        batch = BatchResult()
        for secret in self.secrets:
            if cancel is not None and cancel.is_set():
                logger.warning("Rotation cancelled before secret=%s", secret.name)
                batch.cancelled = True
                break

            logger.debug(
                "Examining secret for rotation: secret=%s client=%s",
                secret.name,
                self.client.name(),
            )
            try:
                result = self.rotate_secret(secret, cancel)
            except Exception as e:
                logger.error("Failed to rotate secret=%s: %s", secret.name, e)
                result = SecretResult(secret.name, Outcome.FAILED, [e])
            batch.results.append(result)

        if cancel is not None and cancel.is_set():
            batch.cancelled = True
        return batch
