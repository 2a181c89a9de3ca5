"""Removal of expired, stale and orphaned lock rows."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from tablelock.lib.exceptions import ConfigurationError, TransientStorageError
from tablelock.lib.runtime import add_ms
from tablelock.services.lock_store import LockStore

logger = logging.getLogger(__name__)


class ExpiryReclaimer:
    """Deletes lock rows whose holder can no longer be relied on.

    A row is reclaimable when its ``expiry_time`` has passed, or when its
    ``update_time`` is older than the stale window (the holder stopped
    renewing, most likely because it crashed).
    """

    def __init__(self, store: LockStore, clock: Callable[[], datetime], stale_window_ms: int):
        self.store = store
        self.clock = clock
        self.stale_window_ms = stale_window_ms

    def _cutoffs(self) -> dict:
        now = self.clock()
        return {"now": now, "stale_cutoff": add_ms(now, -self.stale_window_ms)}

    def reclaim(self, target: str) -> int:
        """Best-effort delete of an expired or stale row for ``target``.

        Never raises for storage errors: if the row survives, the following
        insert simply fails and is retried.
        """
        params = self._cutoffs()
        params["target"] = target
        try:
            removed = self.store.execute_update(self.store.statements.delete_expired, params, operation="reclaim")
        except TransientStorageError as e:
            logger.warning("Failed to remove expired lock for target '%s': %s", target, e)
            return 0
        if removed:
            logger.warning("Removed expired lock for target '%s'", target)
        return removed

    def purge_expired(self) -> int:
        """Delete every expired or stale row in the table."""
        removed = self.store.execute_update(self.store.statements.purge_expired, self._cutoffs(), operation="purge")
        if removed:
            logger.warning("Removed %d expired lock(s) from '%s'", removed, self.store.table_name)
        return removed

    def sweep_dead_host(self, host_name: str, process_started_at: datetime) -> int:
        """Delete rows left on this host by a process that ran before this one.

        Rows created by the current process always have a ``create_time`` at
        or after its start, so they are never touched.

        Raises:
            ConfigurationError: if the sweep cannot run
        """
        params = {"host_name": host_name, "started_at": process_started_at}
        try:
            removed = self.store.execute_update(
                self.store.statements.delete_dead_host, params, operation="dead-host sweep"
            )
        except TransientStorageError as e:
            raise ConfigurationError(
                f"Dead-host sweep on lock table '{self.store.table_name}' failed", details=str(e)
            ) from e
        if removed:
            logger.warning(
                "Removed %d lock(s) left on host '%s' by a previous process", removed, host_name
            )
        return removed
