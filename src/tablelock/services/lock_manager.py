"""Lease-based mutual exclusion on top of an ordinary database table.

Each locked target is one row in the lock table; the unique constraint on
``target`` is what guarantees that at most one caller, in any process on any
host, holds a given target at a time.

Usage:
    manager = LockManager("mysql+pymysql://user:pass@db/app", "db_locks")
    code = manager.acquire("nightly-report", timeout_ms=5000)
    if code:
        try:
            run_report()
        finally:
            manager.release("nightly-report", code)
    manager.close()
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Callable, Generator, List, Optional, Union

from sqlalchemy.engine import Engine

from tablelock.lib.config import LockSettings, validate_target
from tablelock.lib.database import get_engine
from tablelock.lib.exceptions import LockAcquisitionError, TransientStorageError, UseAfterCloseError
from tablelock.lib.held_locks import HeldLocks
from tablelock.lib.runtime import add_ms, host_name as resolve_host_name, process_start_time, utcnow
from tablelock.lib.scheduler import LeaseScheduler, ScheduledHandle
from tablelock.models.lock_row import LOCKED, LockRow
from tablelock.services.lock_store import LockStore
from tablelock.services.reclaimer import ExpiryReclaimer
from tablelock.services.renewer import LeaseRenewer

logger = logging.getLogger(__name__)

# extra attempts allowed on top of timeout / retry interval
ATTEMPTS_SAFEGUARD = 1000


class LockManager:
    """Acquires, renews and releases leases stored in one lock table.

    Construction creates the table if needed, clears rows left on this host
    by an earlier process, and starts renewing held leases in the background.
    """

    def __init__(
        self,
        connection_source: Union[Engine, str],
        table_name: Optional[str] = None,
        *,
        settings: Optional[LockSettings] = None,
        scheduler: Optional[LeaseScheduler] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        host_name: Optional[str] = None,
        process_started_at: Optional[datetime] = None,
        sweep_dead_host: bool = True,
    ):
        """Initialize the lock manager.

        Args:
            connection_source: SQLAlchemy engine, or a database URL/path
            table_name: lock table; defaults to ``settings.table_name``
            settings: lease/timeout defaults, stale window and renew interval
            scheduler: shared scheduler for the renewer; when omitted the
                manager runs its own and shuts it down on ``close``
            clock: returns the current naive UTC time
            sleep: called with seconds between acquisition attempts
            host_name: identifier written to ``host_name``
            process_started_at: start of this process, for the dead-host sweep
            sweep_dead_host: delete rows this host wrote before
                ``process_started_at``. Turn off for short-lived processes
                that leave leases behind on purpose, such as the CLI.

        Raises:
            ConfigurationError: if the table cannot be created or swept
        """
        self.settings = (settings or LockSettings()).validate()
        if table_name:
            self.settings = replace(self.settings, table_name=table_name).validate()
        self.table_name = self.settings.table_name
        if isinstance(connection_source, str):
            connection_source = get_engine(connection_source)
        self.engine = connection_source

        self.clock = clock
        self.sleep = sleep
        self.host_name = host_name or resolve_host_name()
        self.process_started_at = process_started_at or process_start_time()

        self.store = LockStore(self.engine, self.table_name)
        self.held = HeldLocks()
        self.reclaimer = ExpiryReclaimer(self.store, clock, self.settings.stale_window_ms)
        self.renewer = LeaseRenewer(self.store, self.held, clock)

        self._closed = False
        self._close_lock = threading.Lock()

        self.store.ensure_table()
        if sweep_dead_host:
            self.reclaimer.sweep_dead_host(self.host_name, self.process_started_at)

        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or LeaseScheduler(
            max_workers=self.settings.renew_workers, name=f"tablelock-{self.table_name}"
        )
        self._renew_handle: ScheduledHandle = self.renewer.start(self.scheduler, self.settings.renew_interval_ms)

    @property
    def closed(self) -> bool:
        return self._closed

    def acquire(
        self,
        target: str,
        lease_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        retry_interval_ms: Optional[int] = None,
    ) -> Optional[str]:
        """Try to lock ``target`` until ``timeout_ms`` has passed.

        Args:
            target: name of the resource to lock
            lease_ms: how long the lease lasts before it can be reclaimed
            timeout_ms: how long to keep trying; 0 means a single attempt
            retry_interval_ms: pause between attempts; 0 retries immediately

        Returns:
            A fresh lease code, or None if the target stayed locked.

        Raises:
            UseAfterCloseError: if the manager has been closed
            ValueError: on invalid arguments
        """
        self._assert_open()
        lease_ms = self.settings.lease_ms if lease_ms is None else lease_ms
        timeout_ms = self.settings.timeout_ms if timeout_ms is None else timeout_ms
        retry_interval_ms = self.settings.retry_interval_ms if retry_interval_ms is None else retry_interval_ms
        validate_target(target)
        if lease_ms <= 0:
            raise ValueError("lease_ms must be positive")
        if timeout_ms < 0 or retry_interval_ms < 0:
            raise ValueError("timeout_ms and retry_interval_ms must not be negative")

        self.reclaimer.reclaim(target)

        code = uuid.uuid4().hex
        now = self.clock()
        deadline = add_ms(now, timeout_ms)
        max_attempts = timeout_ms // max(retry_interval_ms, 1) + ATTEMPTS_SAFEGUARD
        attempts = 0
        last_error: Optional[TransientStorageError] = None

        while True:
            params = {
                "host_name": self.host_name,
                "target": target,
                "code": code,
                "status": LOCKED,
                "expiry_time": add_ms(now, lease_ms),
                "update_time": now,
                "create_time": now,
            }
            try:
                if self.store.execute_update(self.store.statements.insert_lock, params, operation="insert"):
                    self.held.put(target, code)
                    logger.info("Acquired lock '%s' after %d failed attempt(s)", target, attempts)
                    return code
            except TransientStorageError as e:
                logger.debug("Failed to acquire lock for target '%s': %s", target, e)
                last_error = e

            if retry_interval_ms > 0:
                self.sleep(retry_interval_ms / 1000.0)
            now = self.clock()
            attempts += 1
            if now >= deadline or attempts >= max_attempts:
                break

        if last_error is not None:
            logger.warning("Failed to acquire lock for target '%s' after timeout: %s", target, last_error)
        return None

    def release(self, target: str, code: str) -> bool:
        """Delete the row for ``target`` if it still carries ``code``.

        Returns:
            True if this call removed the lock, False if it was already gone
            or belongs to a different lease.

        Raises:
            UseAfterCloseError: if the manager has been closed
            TransientStorageError: if the delete could not be run
        """
        self._assert_open()
        return self._delete(target, code)

    def _delete(self, target: str, code: str) -> bool:
        self.held.remove_if(target, code)
        released = self.store.execute_update(
            self.store.statements.delete_by_code, {"target": target, "code": code}, operation="delete"
        ) > 0
        if released:
            logger.info("Released lock '%s'", target)
        else:
            logger.debug("Lock '%s' was not held with the given code", target)
        return released

    @contextmanager
    def hold(
        self,
        target: str,
        lease_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        retry_interval_ms: Optional[int] = None,
    ) -> Generator[str, None, None]:
        """Context manager that holds ``target`` for the duration of the block.

        The row is deleted on exit even if the manager was closed inside the
        block.

        Raises:
            LockAcquisitionError: if the lock is not obtained in time

        Example:
            with manager.hold("purge", timeout_ms=10000):
                purge_old_rows()
        """
        code = self.acquire(target, lease_ms, timeout_ms, retry_interval_ms)
        if code is None:
            timeout = self.settings.timeout_ms if timeout_ms is None else timeout_ms
            raise LockAcquisitionError(target, f"still locked after {timeout} ms", timeout_ms=timeout)
        try:
            yield code
        finally:
            self._delete(target, code)

    def is_held(self, target: str) -> bool:
        """True if this manager currently believes it holds ``target``."""
        return target in self.held

    def held_targets(self) -> List[str]:
        return self.held.targets()

    def locks(self) -> List[LockRow]:
        """All rows currently in the lock table, from any holder."""
        return self.store.fetch_locks()

    def close(self) -> None:
        """Stop renewing leases. Safe to call more than once, from any thread.

        Rows still held are left in place and lapse through expiry or the
        stale window.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._renew_handle.cancel()
        if self._owns_scheduler:
            self.scheduler.shutdown(wait=False)
        logger.debug("Closed lock manager for '%s'", self.table_name)

    def _assert_open(self) -> None:
        if self._closed:
            raise UseAfterCloseError(self.table_name)

    def __enter__(self) -> "LockManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
