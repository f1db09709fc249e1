"""
Worker liveness.

A crashed worker never records ``finished_at``, so an unfinished row alone
does not prove the process is alive. A worker counts as active while it is
unfinished and either pinged recently or is in the middle of an exec, since a
long job can keep it from sending heartbeats.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, select

from app.models.exec_record import ExecRecord
from app.models.worker_record import WorkerRecord
from core.monitor.env import GRACE_PERIOD


def ping_deadline(now: datetime, ping_interval: int, grace_period: int = GRACE_PERIOD) -> datetime:
    """Oldest heartbeat that still counts as recent."""
    return now - timedelta(seconds=ping_interval + grace_period)


def is_active(
    worker: WorkerRecord,
    now: datetime,
    ping_interval: int,
    last_exec: Optional[ExecRecord] = None,
    grace_period: int = GRACE_PERIOD,
) -> bool:
    """
    Decide whether a worker row stands for a running process.

    Args:
        worker: The worker record
        now: Current time
        ping_interval: Configured heartbeat interval in seconds, 0 when
            heartbeats are disabled
        last_exec: The exec referenced by worker.last_exec_id, if loaded
        grace_period: Seconds of heartbeat jitter to tolerate

    Returns:
        True if the worker is considered alive
    """
    if worker.finished_at is not None:
        return False

    if ping_interval and worker.pinged_at > ping_deadline(now, ping_interval, grace_period):
        return True

    return (
        last_exec is not None
        and last_exec.id == worker.last_exec_id
        and last_exec.finished_at is None
    )


def open_exec_clause():
    return (
        select(ExecRecord.id)
        .where(
            ExecRecord.id == WorkerRecord.last_exec_id,
            ExecRecord.finished_at.is_(None),
        )
        .exists()
    )


def active_clause(now: datetime, ping_interval: int, grace_period: int = GRACE_PERIOD):
    """SQL clause over the worker table matching the same rows as is_active()."""
    evidence = [open_exec_clause()]
    if ping_interval:
        evidence.append(WorkerRecord.pinged_at > ping_deadline(now, ping_interval, grace_period))

    return and_(WorkerRecord.finished_at.is_(None), or_(*evidence))
