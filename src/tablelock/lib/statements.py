"""SQL statement templates for the lock table.

Every statement uses named bind parameters so the lock store can run it with
a plain dict of values.
"""
from __future__ import annotations

from sqlalchemy import Table, and_, bindparam, delete, insert, or_, select, update


class LockStatements:
    """Prepared statements for one lock table.

    Bind parameters:
        delete_expired:   target, now, stale_cutoff
        insert_lock:      host_name, target, code, status, expiry_time,
                          update_time, create_time
        delete_by_code:   target, code
        renew:            new_update_time, match_target, match_code
                          (use ``renew_params``)
        delete_dead_host: host_name, started_at
        purge_expired:    now, stale_cutoff
    """

    def __init__(self, table: Table):
        self.table = table
        c = table.c

        self.delete_expired = delete(table).where(
            and_(
                c.target == bindparam("target"),
                or_(c.expiry_time < bindparam("now"), c.update_time < bindparam("stale_cutoff")),
            )
        )

        # column names double as bind parameter names for the insert
        self.insert_lock = insert(table)

        self.delete_by_code = delete(table).where(
            and_(c.target == bindparam("target"), c.code == bindparam("code"))
        )

        # bind names must not collide with column names in UPDATE ... SET
        self.renew = (
            update(table)
            .where(and_(c.target == bindparam("match_target"), c.code == bindparam("match_code")))
            .values(update_time=bindparam("new_update_time", type_=c.update_time.type))
        )

        self.delete_dead_host = delete(table).where(
            and_(c.host_name == bindparam("host_name"), c.create_time < bindparam("started_at"))
        )

        self.purge_expired = delete(table).where(
            or_(c.expiry_time < bindparam("now"), c.update_time < bindparam("stale_cutoff"))
        )

        self.select_locks = select(table).order_by(c.target)

    @staticmethod
    def renew_params(new_update_time, target: str, code: str) -> dict:
        return {"new_update_time": new_update_time, "match_target": target, "match_code": code}
