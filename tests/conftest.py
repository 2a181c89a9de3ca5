from datetime import datetime, timedelta

import pytest

from tablelock.lib.database import get_engine
from tablelock.lib.scheduler import ScheduledHandle
from tablelock.services.lock_manager import LockManager


class FakeClock:
    """Deterministic clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start=datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += timedelta(milliseconds=ms)

    def sleep(self, seconds):
        self.advance(round(seconds * 1000))


class RecordingScheduler:
    """Scheduler stand-in that records tasks without ever running them."""

    def __init__(self):
        self.handles = []

    def schedule_with_fixed_delay(self, task, initial_delay, delay):
        handle = ScheduledHandle(task, delay)
        self.handles.append(handle)
        return handle


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    engine = get_engine(str(tmp_path / "locks.db"))
    yield engine
    engine.dispose()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def make_manager(engine, clock, scheduler):
    managers = []

    def factory(**kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", clock.sleep)
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("host_name", "host-a")
        kwargs.setdefault("process_started_at", clock.now - timedelta(hours=1))
        manager = LockManager(engine, "db_locks", **kwargs)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.close()
