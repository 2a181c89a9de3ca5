"""Lock table model for database-level process coordination."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import TIMESTAMP, Column, MetaData, String, Table, UniqueConstraint

LOCKED = "locked"
UNLOCKED = "unlocked"

HOST_NAME_LENGTH = 64
TARGET_LENGTH = 255
CODE_LENGTH = 64


def build_lock_table(name: str, metadata: Optional[MetaData] = None) -> Table:
    """Build the lock table for ``name``.

    One row per currently held target. The unique constraint on ``target`` is
    the only thing that decides who holds a lock:

        host_name   VARCHAR(64)
        target      VARCHAR(255) NOT NULL
        code        VARCHAR(64)
        status      VARCHAR(16)  NOT NULL
        expiry_time TIMESTAMP    NOT NULL
        update_time TIMESTAMP    NOT NULL
        create_time TIMESTAMP    NOT NULL
        UNIQUE (target)
    """
    if metadata is None:
        # separate metadata per call so the same name can be built twice
        metadata = MetaData()
    return Table(
        name,
        metadata,
        Column("host_name", String(HOST_NAME_LENGTH)),
        Column("target", String(TARGET_LENGTH), nullable=False),
        Column("code", String(CODE_LENGTH)),
        Column("status", String(16), nullable=False),
        Column("expiry_time", TIMESTAMP, nullable=False),
        Column("update_time", TIMESTAMP, nullable=False),
        Column("create_time", TIMESTAMP, nullable=False),
        UniqueConstraint("target"),
    )


@dataclass(frozen=True)
class LockRow:
    """Read-only snapshot of one row in the lock table."""

    host_name: Optional[str]
    target: str
    code: Optional[str]
    status: str
    expiry_time: datetime
    update_time: datetime
    create_time: datetime

    @classmethod
    def from_mapping(cls, row) -> "LockRow":
        return cls(
            host_name=row["host_name"],
            target=row["target"],
            code=row["code"],
            status=row["status"],
            expiry_time=row["expiry_time"],
            update_time=row["update_time"],
            create_time=row["create_time"],
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expiry_time < now
