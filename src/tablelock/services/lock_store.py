from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator, List, Mapping, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import Executable

from tablelock.lib.exceptions import ConfigurationError, TransientStorageError
from tablelock.lib.statements import LockStatements
from tablelock.models.lock_row import LockRow, build_lock_table

logger = logging.getLogger(__name__)


class LockStore:
    """Runs the lock statements against one table.

    Every call checks a connection out of the engine's pool, runs one
    statement in its own transaction and returns the connection. Any
    SQLAlchemy failure surfaces as ``TransientStorageError``.
    """

    def __init__(self, engine: Engine, table_name: str):
        self.engine = engine
        self.table_name = table_name
        self.table = build_lock_table(table_name)
        self.statements = LockStatements(self.table)

    def ensure_table(self) -> bool:
        """Create the lock table if it does not exist.

        Returns True if this call created it.

        Raises:
            ConfigurationError: if the table is still missing afterwards
        """
        created = False
        try:
            if not self._has_table():
                self.table.create(self.engine, checkfirst=True)
                created = True
                logger.info("Created lock table '%s'", self.table_name)
        except SQLAlchemyError as e:
            # another process may have created it first; verified below
            logger.debug("Creating lock table '%s' failed: %s", self.table_name, e)

        try:
            exists = self._has_table()
        except SQLAlchemyError as e:
            raise ConfigurationError(f"Cannot verify lock table '{self.table_name}'", details=str(e)) from e
        if not exists:
            raise ConfigurationError(f"Lock table '{self.table_name}' does not exist after creation attempt")
        return created

    def _has_table(self) -> bool:
        return inspect(self.engine).has_table(self.table_name)

    @contextmanager
    def connection(self) -> Generator[Connection, None, None]:
        """Check out one connection for a batch of ``execute_update`` calls."""
        try:
            conn = self.engine.connect()
        except SQLAlchemyError as e:
            raise TransientStorageError("Cannot connect to lock database", operation="connect", original_error=e) from e
        try:
            yield conn
        finally:
            conn.close()

    def execute_update(
        self,
        statement: Executable,
        params: Mapping[str, Any],
        conn: Optional[Connection] = None,
        operation: str = "update",
    ) -> int:
        """Run an INSERT/UPDATE/DELETE and commit. Returns the affected row count."""
        try:
            if conn is None:
                with self.engine.begin() as c:
                    return c.execute(statement, dict(params)).rowcount
            try:
                result = conn.execute(statement, dict(params))
                conn.commit()
            except SQLAlchemyError:
                conn.rollback()
                raise
            return result.rowcount
        except SQLAlchemyError as e:
            raise TransientStorageError(
                f"Lock table '{self.table_name}' {operation} failed", operation=operation, original_error=e
            ) from e

    def fetch_locks(self, target: Optional[str] = None) -> List[LockRow]:
        query = self.statements.select_locks
        if target is not None:
            query = query.where(self.table.c.target == target)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            raise TransientStorageError(
                f"Reading lock table '{self.table_name}' failed", operation="select", original_error=e
            ) from e
        return [LockRow.from_mapping(r) for r in rows]
