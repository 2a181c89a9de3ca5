from .lock_row import LOCKED, UNLOCKED, LockRow, build_lock_table  # noqa: F401
