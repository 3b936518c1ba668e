"""
Disablement engine.

After a rotation the previous credential stays active so consumers holding
it keep working. Once it has been superseded for longer than disable_after,
this engine asks the disable client to deactivate it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from keyrotor.disable.interface import DisableClient
from keyrotor.models import BatchResult, Outcome, Secret, SecretResult

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DisableManager:
    def __init__(
        self,
        client: DisableClient,
        disable_after: timedelta,
        dry_run: bool,
        secrets: list[Secret],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.disable_after = disable_after
        self.dry_run = dry_run
        self.secrets = secrets
        self._clock = clock

    def needs_disablement(self, secret: Secret) -> bool:
        """True if the superseded credential is older than disable_after."""
        try:
            updated = self.client.last_updated(secret)
        except Exception as e:
            logger.warning(
                "Error checking last update date for disablement; skipping: "
                "secret=%s client=%s error=%s",
                secret.name,
                self.client.name(),
                e,
            )
            return False

        if updated is None:
            logger.debug("Nothing to disable: secret=%s client=%s", secret.name, self.client.name())
            return False

        now = self._clock()
        if now - updated > self.disable_after:
            logger.debug(
                "Secret is active and old enough to require disablement: secret=%s client=%s "
                "now=%s updated=%s disable_after=%s",
                secret.name,
                self.client.name(),
                now.isoformat(),
                updated.isoformat(),
                self.disable_after,
            )
            return True
        return False

    def disable_secret(self, secret: Secret) -> SecretResult:
        """Disable one secret if needed. Failures are logged and recorded, never raised."""
        if not self.needs_disablement(secret):
            return SecretResult(secret.name, Outcome.CURRENT)

        if self.dry_run:
            logger.info(
                "Dry run: old secret would be disabled: secret=%s client=%s",
                secret.name,
                self.client.name(),
            )
            return SecretResult(secret.name, Outcome.DRY_RUN)

        try:
            self.client.disable_secret(secret)
        except Exception as e:
            logger.error(
                "Failed to disable old active secret: secret=%s client=%s error=%s",
                secret.name,
                self.client.name(),
                e,
            )
            return SecretResult(secret.name, Outcome.FAILED, [e])

        logger.info("Disabled old secret=%s client=%s", secret.name, self.client.name())
        return SecretResult(secret.name, Outcome.DISABLED)

    def disable_all(self, cancel: threading.Event | None = None) -> BatchResult:
        """Disable every configured secret that needs it, in configured order."""
        batch = BatchResult()
        for secret in self.secrets:
            if cancel is not None and cancel.is_set():
                logger.warning("Disablement cancelled before secret=%s", secret.name)
                batch.cancelled = True
                break

            logger.debug(
                "Examining secret for disablement: secret=%s client=%s",
                secret.name,
                self.client.name(),
            )
            batch.results.append(self.disable_secret(secret))

        if cancel is not None and cancel.is_set():
            batch.cancelled = True
        return batch
