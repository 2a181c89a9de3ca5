import json
import logging
import os
import subprocess
import sys
from datetime import timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

from tablelock.cli import list_locks, main
from tablelock.lib.config import LockSettings
from tablelock.lib.database import InMemoryAdapter, get_engine
from tablelock.lib.log import configure_logging
from tablelock.lib.runtime import utcnow
from tablelock.models.lock_row import LOCKED
from tablelock.services.lock_store import LockStore

SRC = Path(__file__).resolve().parents[1] / "src"


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("TABLELOCK_DATABASE", raising=False)
    monkeypatch.delenv("TABLELOCK_TABLE", raising=False)
    return str(tmp_path / "locks.db")


def test_init_creates_table(db, capsys):
    assert main(["--database", db, "init"]) == 0
    assert "created" in capsys.readouterr().out

    assert main(["--database", db, "init"]) == 0
    assert "already exists" in capsys.readouterr().out


def test_acquire_list_release_cycle(db, capsys):
    assert main(["--database", db, "acquire", "nightly", "--lease-ms", "60000", "--timeout-ms", "0"]) == 0
    code = capsys.readouterr().out.strip()
    assert len(code) == 32

    assert main(["--database", db, "acquire", "nightly", "--timeout-ms", "200", "--retry-ms", "50"]) == 1
    assert "held by another process" in capsys.readouterr().out

    assert main(["--database", db, "list"]) == 0
    out = capsys.readouterr().out
    assert "nightly" in out and code in out and LOCKED in out

    assert main(["--database", db, "release", "nightly", code]) == 0
    assert "Released" in capsys.readouterr().out
    assert main(["--database", db, "release", "nightly", code]) == 1

    assert main(["--database", db, "list"]) == 0
    assert "No locks" in capsys.readouterr().out


def test_cleanup_removes_expired_rows(db, capsys):
    assert main(["--database", db, "--table", "job_locks", "init"]) == 0
    store = LockStore(get_engine(db), "job_locks")
    now = utcnow()
    store.execute_update(store.statements.insert_lock, {
        "host_name": "elsewhere",
        "target": "old",
        "code": "c",
        "status": LOCKED,
        "expiry_time": now - timedelta(minutes=1),
        "update_time": now - timedelta(minutes=5),
        "create_time": now - timedelta(minutes=5),
    })
    capsys.readouterr()

    assert main(["--database", db, "--table", "job_locks", "cleanup"]) == 0
    assert "Removed 1 expired" in capsys.readouterr().out
    assert store.fetch_locks() == []


def test_config_file_supplies_database(db, tmp_path, capsys):
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"database": db, "locks": {"table_name": "cfg_locks"}}))

    assert main(["--config", str(cfg), "init"]) == 0
    assert "'cfg_locks' created" in capsys.readouterr().out


def test_list_with_injected_engine(capsys):
    adapter = InMemoryAdapter()
    args = SimpleNamespace(settings=LockSettings(), engine=adapter.engine)
    LockStore(adapter.engine, "db_locks").ensure_table()

    assert list_locks(args) == 0
    assert "No locks in 'db_locks'" in capsys.readouterr().out
    adapter.dispose()


def test_errors_are_reported(db, capsys):
    # table was never created
    assert main(["--database", db, "release", "x", "y"]) == 2
    assert capsys.readouterr().out.startswith("ERROR:")


def test_no_command_prints_help(db, capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def run_cli(cwd, *argv):
    env = {k: v for k, v in os.environ.items() if not k.startswith("TABLELOCK_")}
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC), env.get("PYTHONPATH")]))
    return subprocess.run(
        [sys.executable, "-m", "tablelock.cli", *argv], cwd=cwd, env=env, capture_output=True, text=True, timeout=60
    )


def test_acquire_from_separate_processes_is_exclusive(db, tmp_path):
    first = run_cli(tmp_path, "--database", db, "acquire", "nightly", "--lease-ms", "600000", "--timeout-ms", "0")
    assert first.returncode == 0, first.stderr
    code = first.stdout.strip()

    second = run_cli(tmp_path, "--database", db, "acquire", "nightly", "--lease-ms", "600000", "--timeout-ms", "0")
    assert second.returncode == 1, second.stderr
    assert "held by another process" in second.stdout

    assert [r.code for r in LockStore(get_engine(db), "db_locks").fetch_locks()] == [code]


def test_configure_logging_adds_one_handler():
    logger = configure_logging(verbose=True)
    configure_logging(verbose=False)
    handlers = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
    assert len(handlers) == 1
    assert logger.level == logging.WARNING
