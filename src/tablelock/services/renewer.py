"""Background lease renewal."""
from __future__ import annotations

import logging
import warnings
from datetime import datetime
from typing import Callable

from tablelock.lib.exceptions import LeaseLostWarning, TransientStorageError
from tablelock.lib.held_locks import HeldLocks
from tablelock.lib.scheduler import LeaseScheduler, ScheduledHandle
from tablelock.services.lock_store import LockStore

logger = logging.getLogger(__name__)


class LeaseRenewer:
    """Keeps the ``update_time`` of every held lease fresh.

    Each run works on a copy of the held-lock table so no lock is held while
    talking to the database. A lease whose row is gone (reclaimed by another
    process or deleted by hand) is dropped from the held-lock table; work
    already done under that lease is not undone.
    """

    def __init__(self, store: LockStore, held: HeldLocks, clock: Callable[[], datetime]):
        self.store = store
        self.held = held
        self.clock = clock

    def start(self, scheduler: LeaseScheduler, interval_ms: int) -> ScheduledHandle:
        interval = interval_ms / 1000.0
        return scheduler.schedule_with_fixed_delay(self.run, interval, interval)

    def run(self) -> None:
        """Scheduler entry point. Storage failures are logged, never raised."""
        try:
            self.renew_once()
        except TransientStorageError as e:
            logger.warning("Failed to refresh locks in '%s': %s", self.store.table_name, e)

    def renew_once(self) -> int:
        """Renew every held lease once. Returns the number still held."""
        leases = self.held.snapshot()
        if not leases:
            return 0

        renewed = 0
        statement = self.store.statements.renew
        with self.store.connection() as conn:
            for target, code in leases.items():
                params = self.store.statements.renew_params(self.clock(), target, code)
                updated = self.store.execute_update(statement, params, conn=conn, operation="renew")
                if updated:
                    renewed += 1
                    continue
                if self.held.remove_if(target, code):
                    self._lease_lost(target)
        return renewed

    def _lease_lost(self, target: str) -> None:
        message = f"Lease on '{target}' was lost: its row in '{self.store.table_name}' no longer exists"
        logger.warning(message)
        warnings.warn(message, LeaseLostWarning, stacklevel=2)
