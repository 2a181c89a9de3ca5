import argparse
from dataclasses import replace
from typing import Optional

from tablelock.lib.config import LockSettings, load_settings
from tablelock.lib.database import get_engine
from tablelock.lib.exceptions import TableLockError
from tablelock.lib.log import configure_logging
from tablelock.lib.runtime import utcnow
from tablelock.services.lock_manager import LockManager
from tablelock.services.lock_store import LockStore
from tablelock.services.reclaimer import ExpiryReclaimer


def _settings(args) -> LockSettings:
    settings = getattr(args, "settings", None) or load_settings(getattr(args, "config", None))
    overrides = {}
    if getattr(args, "database", None):
        overrides["database"] = args.database
    if getattr(args, "table", None):
        overrides["table_name"] = args.table
    if overrides:
        settings = replace(settings, **overrides).validate()
    return settings


def _engine(args, settings: LockSettings):
    # tests inject an engine so in-memory databases survive across commands
    engine = getattr(args, "engine", None)
    if engine is not None:
        return engine
    if not settings.database:
        raise SystemExit("No database configured: pass --database or set 'database' in config.json")
    return get_engine(settings.database)


def _store(args):
    settings = _settings(args)
    return settings, LockStore(_engine(args, settings), settings.table_name)


def init(args):
    settings, store = _store(args)
    created = store.ensure_table()
    print(f"Lock table '{settings.table_name}' {'created' if created else 'already exists'}")
    return 0


def list_locks(args):
    settings, store = _store(args)
    rows = store.fetch_locks()
    if not rows:
        print(f"No locks in '{settings.table_name}'")
        return 0
    now = utcnow()
    for row in rows:
        state = "expired" if row.is_expired(now) else row.status
        print(
            f"{row.target}  host={row.host_name} code={row.code} {state} "
            f"expires={row.expiry_time:%Y-%m-%d %H:%M:%S} updated={row.update_time:%Y-%m-%d %H:%M:%S}"
        )
    return 0


def acquire(args):
    settings = _settings(args)
    # the lease must outlive this process, so rows left by earlier runs on
    # this host are not swept
    manager = LockManager(_engine(args, settings), settings=settings, sweep_dead_host=False)
    try:
        code = manager.acquire(
            args.target,
            lease_ms=getattr(args, "lease_ms", None),
            timeout_ms=getattr(args, "timeout_ms", None),
            retry_interval_ms=getattr(args, "retry_ms", None),
        )
    finally:
        manager.close()
    if code is None:
        print(f"Lock '{args.target}' is held by another process")
        return 1
    print(code)
    return 0


def release(args):
    # a LockManager here would run the dead-host sweep and remove rows that
    # an earlier `acquire` on this host left behind
    _, store = _store(args)
    released = store.execute_update(
        store.statements.delete_by_code, {"target": args.target, "code": args.code}, operation="delete"
    ) > 0
    if not released:
        print(f"Lock '{args.target}' is not held with code {args.code}")
        return 1
    print(f"Released '{args.target}'")
    return 0


def cleanup(args):
    settings, store = _store(args)
    store.ensure_table()
    removed = ExpiryReclaimer(store, utcnow, settings.stale_window_ms).purge_expired()
    print(f"Removed {removed} expired lock(s) from '{settings.table_name}'")
    return 0


def main(argv: Optional[list] = None):
    parser = argparse.ArgumentParser(prog="tablelock", description="Inspect and manage database table locks")
    parser.add_argument("--config", help="Path to JSON config file (default: ./config.json)")
    parser.add_argument("--database", help="Override config: database URL or SQLite path")
    parser.add_argument("--table", help="Override config: lock table name")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    sub = parser.add_subparsers(dest="cmd")

    p_init = sub.add_parser("init", help="Create the lock table if it does not exist")
    p_init.set_defaults(func=init)

    p_list = sub.add_parser("list", help="Show every row in the lock table")
    p_list.set_defaults(func=list_locks)

    p_acquire = sub.add_parser(
        "acquire",
        help="Acquire a lock and print its code. The lease is not renewed after exit, so "
        "it can be reclaimed once it expires or goes unrenewed for the stale window",
    )
    p_acquire.add_argument("target")
    p_acquire.add_argument("--lease-ms", type=int, help="Lease duration in milliseconds")
    p_acquire.add_argument("--timeout-ms", type=int, help="How long to keep trying in milliseconds")
    p_acquire.add_argument("--retry-ms", type=int, help="Pause between attempts in milliseconds")
    p_acquire.set_defaults(func=acquire)

    p_release = sub.add_parser("release", help="Release a lock using the code printed by acquire")
    p_release.add_argument("target")
    p_release.add_argument("code")
    p_release.set_defaults(func=release)

    p_cleanup = sub.add_parser("cleanup", help="Delete expired and stale locks")
    p_cleanup.set_defaults(func=cleanup)

    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except TableLockError as e:
        print(f"ERROR: {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
