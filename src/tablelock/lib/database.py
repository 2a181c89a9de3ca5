from __future__ import annotations

import os
from typing import Optional
from urllib.parse import quote_plus, unquote_plus, urlparse, urlunparse

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

MEMORY_URL = "sqlite:///:memory:"


def get_engine(url: Optional[str] = None) -> Engine:
    """Create a SQLAlchemy engine. Defaults to in-memory SQLite when url is None."""
    url = normalize_db_url(url or MEMORY_URL)
    if _is_sqlite_memory(url):
        # one shared connection, otherwise every checkout sees an empty database
        return create_engine(
            url,
            echo=False,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    # pool_pre_ping drops connections the server closed while idle
    return create_engine(url, echo=False, future=True, pool_pre_ping=True)


def _is_sqlite_memory(url: str) -> bool:
    return url.startswith("sqlite") and (url.endswith(":memory:") or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"))


def normalize_db_url(value: str) -> str:
    """Normalize different DB connection representations into a SQLAlchemy URL.

    - URLs (contain '://') are returned as-is, except that credentials are
      percent-encoded.
    - Semicolon-separated ``key=value`` strings (MySQL/Windows style DSNs) are
      converted to ``mysql+pymysql://`` URLs.
    - Anything that looks like a filesystem path becomes a sqlite URL.
    """
    if not value:
        return value

    if "://" in value:
        return _encode_credentials(value)

    if "=" in value and ";" in value:
        url = _dsn_to_mysql_url(value)
        if url:
            return url

    path = value.replace("\\", "/")
    if os.path.exists(path) or "/" in path or path.endswith(".db"):
        return f"sqlite:///{path}"

    return value


def _encode_credentials(url: str) -> str:
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not (parsed.username or parsed.password):
        return url

    # unquote first so already-encoded credentials are not encoded twice
    userinfo = quote_plus(unquote_plus(parsed.username)) if parsed.username else ""
    if parsed.password is not None:
        userinfo = f"{userinfo}:{quote_plus(unquote_plus(parsed.password))}"

    hostport = parsed.hostname or ""
    if parsed.port:
        hostport = f"{hostport}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=f"{userinfo}@{hostport}"))


def _dsn_to_mysql_url(dsn: str) -> Optional[str]:
    kv = {}
    for part in dsn.split(";"):
        if "=" in part:
            k, v = part.split("=", 1)
            kv[k.strip().lower()] = v.strip()

    host = kv.get("server") or kv.get("host")
    user = kv.get("user") or kv.get("uid") or kv.get("username")
    password = kv.get("password") or kv.get("pwd")
    port = kv.get("port")
    database = kv.get("database") or kv.get("initial catalog") or kv.get("dbname")
    if not (host and user and database):
        return None

    port_part = f":{port}" if port else ""
    url = f"mysql+pymysql://{quote_plus(user)}:{quote_plus(password or '')}@{host}{port_part}/{database}"

    sslmode = kv.get("sslmode") or kv.get("ssl")
    if sslmode and sslmode.lower() not in ("none", "disable", "disabled", "false"):
        url = f"{url}?ssl_mode={quote_plus(sslmode)}"
    return url


class InMemoryAdapter:
    """In-memory SQLite engine for tests.

    Usage:
        adapter = InMemoryAdapter()
        manager = LockManager(adapter.engine)
    """

    def __init__(self):
        self.engine = get_engine(MEMORY_URL)

    def dispose(self) -> None:
        self.engine.dispose()
