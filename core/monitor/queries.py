"""Reusable statements over the monitor records."""

from datetime import datetime, timedelta
from typing import Union

from sqlalchemy import select

from app.models.exec_record import ExecRecord
from app.models.push_record import PushRecord
from app.models.worker_record import WorkerRecord
from core.monitor.liveness import active_clause


def push_by_job(sender_name: str, job_uid: str):
    """
    Newest push for a queue's job id.

    Some queue backends reuse job ids once a job is gone, so only the most
    recent push is relevant.
    """
    return (
        select(PushRecord)
        .where(
            PushRecord.sender_name == sender_name,
            PushRecord.job_uid == str(job_uid),
        )
        .order_by(PushRecord.id.desc())
        .limit(1)
    )


def execs_by_push(push_id: int):
    return (
        select(ExecRecord)
        .where(ExecRecord.push_id == push_id)
        .order_by(ExecRecord.id)
    )


def deprecated_pushes(now: datetime, age: Union[int, timedelta]):
    """Pushes older than the given age, for external retention jobs."""
    if not isinstance(age, timedelta):
        age = timedelta(seconds=age)
    return select(PushRecord).where(PushRecord.pushed_at < now - age)


def workers_by_event(host: str, pid: int):
    return select(WorkerRecord).where(
        WorkerRecord.host == host,
        WorkerRecord.pid == pid,
    )


def active_worker(host: str, pid: int, now: datetime, ping_interval: int):
    """The live worker row for a process, newest first."""
    return (
        workers_by_event(host, pid)
        .where(active_clause(now, ping_interval))
        .order_by(WorkerRecord.id.desc())
        .limit(1)
    )
