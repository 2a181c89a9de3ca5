import json

import pytest

from tablelock.lib.config import LockSettings, load_settings, validate_target
from tablelock.lib.exceptions import ConfigurationError


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = load_settings(env={})

    assert settings == LockSettings()
    assert settings.lease_ms == 180000
    assert settings.timeout_ms == 3000
    assert settings.retry_interval_ms == 0
    assert settings.stale_window_ms == 60000
    assert settings.renew_interval_ms == 1000


def test_load_from_cwd_config(tmp_path, monkeypatch):
    (tmp_path / "config.json").write_text(json.dumps({
        "database": "sqlite:///locks.db",
        "locks": {"table_name": "job_locks", "lease_ms": "60000", "retry_interval_ms": 50},
    }))
    monkeypatch.chdir(tmp_path)

    settings = load_settings(env={})

    assert settings.database == "sqlite:///locks.db"
    assert settings.table_name == "job_locks"
    assert settings.lease_ms == 60000
    assert settings.retry_interval_ms == 50


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"database": "sqlite:///a.db", "locks": {"table_name": "a_locks"}}))

    settings = load_settings(str(path), env={"TABLELOCK_DATABASE": "sqlite:///b.db", "TABLELOCK_TABLE": "b_locks"})

    assert settings.database == "sqlite:///b.db"
    assert settings.table_name == "b_locks"


def test_unknown_keys_are_ignored(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"locks": {"colour": "blue"}}))
    assert load_settings(str(path), env={}) == LockSettings()


@pytest.mark.parametrize(
    "content, field",
    [
        ({"locks": {"lease_ms": "soon"}}, "lease_ms"),
        ({"locks": {"lease_ms": 0}}, "lease_ms"),
        ({"locks": {"timeout_ms": -1}}, "timeout_ms"),
        ({"locks": {"table_name": "bad name;"}}, "table_name"),
        ({"locks": {"renew_interval_ms": 60000}}, "renew_interval_ms"),
        ({"locks": []}, "locks"),
    ],
)
def test_invalid_values(tmp_path, content, field):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps(content))

    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(str(path), env={})
    assert exc_info.value.field == field
    assert exc_info.value.config_file == str(path)


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_settings(str(tmp_path / "nope.json"), env={})


def test_malformed_json(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(str(path), env={})
    assert exc_info.value.details


def test_validate_target():
    validate_target("x" * 255)
    with pytest.raises(ValueError):
        validate_target("")
    with pytest.raises(ValueError):
        validate_target("x" * 256)
