"""Several lock managers racing for one target, as separate processes would."""
import threading
import time
from datetime import timedelta

import pytest

from tablelock.lib.config import LockSettings
from tablelock.lib.exceptions import LeaseLostWarning
from tablelock.lib.runtime import utcnow
from tablelock.services.lock_manager import LockManager


def test_at_most_one_holder_at_a_time(engine, scheduler):
    started = utcnow() - timedelta(hours=1)
    managers = [
        LockManager(engine, "db_locks", scheduler=scheduler, host_name=f"host-{i}", process_started_at=started)
        for i in range(6)
    ]
    guard = threading.Lock()
    state = {"active": 0, "max": 0, "acquired": 0}
    errors = []

    def worker(manager):
        try:
            for _ in range(4):
                code = manager.acquire("shared", 60000, 5000, 5)
                if code is None:
                    continue
                with guard:
                    state["active"] += 1
                    state["acquired"] += 1
                    state["max"] = max(state["max"], state["active"])
                time.sleep(0.005)
                with guard:
                    state["active"] -= 1
                assert manager.release("shared", code) is True
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(m,)) for m in managers]
    try:
        for t in threads:
            t.start()
        for t in threads:
            t.join()
    finally:
        for m in managers:
            m.close()

    assert errors == []
    assert state["max"] == 1
    assert state["acquired"] > 0


def test_timeout_uses_wall_clock(engine, scheduler):
    started = utcnow() - timedelta(hours=1)
    holder = LockManager(engine, "db_locks", scheduler=scheduler, host_name="host-a", process_started_at=started)
    waiter = LockManager(engine, "db_locks", scheduler=scheduler, host_name="host-b", process_started_at=started)
    try:
        assert holder.acquire("res1", 60000, 0) is not None

        start = time.monotonic()
        assert waiter.acquire("res1", 60000, 1000, 100) is None
        elapsed = time.monotonic() - start

        assert 0.9 <= elapsed < 2.5
    finally:
        holder.close()
        waiter.close()


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return False


def test_background_renewal_and_lost_lease(engine):
    settings = LockSettings(renew_interval_ms=50)
    manager = LockManager(engine, "db_locks", settings=settings, host_name="host-a",
                          process_started_at=utcnow() - timedelta(hours=1))
    try:
        code = manager.acquire("renewed", 60000, 0)
        acquired_at = manager.locks()[0].update_time

        assert wait_for(lambda: manager.locks()[0].update_time > acquired_at)

        store = manager.store
        with pytest.warns(LeaseLostWarning) as record:
            store.execute_update(store.statements.delete_by_code, {"target": "renewed", "code": code})
            assert wait_for(lambda: any(w.category is LeaseLostWarning for w in record))
        assert not manager.is_held("renewed")
    finally:
        manager.close()
