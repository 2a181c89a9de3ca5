"""Clock, host and process identity used to stamp lock rows."""
from __future__ import annotations

import socket
from datetime import datetime, timedelta, timezone

import psutil

from tablelock.models.lock_row import HOST_NAME_LENGTH


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the form stored in the table)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def host_name() -> str:
    return socket.gethostname()[:HOST_NAME_LENGTH]


def process_start_time() -> datetime:
    """Start time of the running process as a naive UTC datetime.

    On Linux psutil derives this from the boot time in ``/proc/stat``, which
    has one-second resolution, so the value can be up to a second early.
    Like clock skew between hosts, this is not compensated.
    """
    started = psutil.Process().create_time()
    return datetime.fromtimestamp(started, timezone.utc).replace(tzinfo=None)


def add_ms(moment: datetime, ms: int) -> datetime:
    return moment + timedelta(milliseconds=ms)
