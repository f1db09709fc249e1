import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.exec_record import ExecRecord
from app.models.push_record import PushRecord
from app.models.worker_record import WorkerRecord
from core.model import Model
from core.monitor.env import Env
from core.monitor.errors import EventRecordingError, MonitorError
from core.monitor.queries import active_worker, push_by_job, workers_by_event

logger = logging.getLogger("QueueMonitor.EventRecorder")


class Decision(str, Enum):
    """What the queue should do with a job that is about to run."""

    PROCEED = "proceed"
    # The job was stopped: skip it without consuming an attempt
    REJECT = "reject"
    # The job is unknown to the monitor: run it as usual
    IGNORE = "ignore"


@dataclass
class ExecDecision:
    decision: Decision
    exec_id: Optional[int] = None

    @property
    def should_execute(self) -> bool:
        return self.decision is not Decision.REJECT


class WorkerIdentity(NamedTuple):
    """Process that is running the current job."""

    host: str
    pid: int


def encode(value: Any) -> Optional[str]:
    """Serialize job arguments or context for storage."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, sort_keys=True)


class EventRecorder:
    """
    Turns queue lifecycle events into push, exec and worker records.

    The recorder keeps no state between calls. Everything it needs, including
    the worker that runs a job, arrives with the event, and every decision is
    made from rows read on the primary database.
    """

    def __init__(self, env: Optional[Env] = None):
        self.env = env or Env()

    @asynccontextmanager
    async def _recording(self, event: str, **identifiers):
        """Wrap storage failures with the event that caused them."""
        try:
            yield
        except MonitorError:
            raise
        except Exception as e:
            details = ", ".join(f"{key}={value}" for key, value in identifiers.items())
            logger.error(f"Failed to record {event} event ({details}): {str(e)}")
            raise EventRecordingError(event, **identifiers) from e

    async def record_push(
        self,
        sender_name: str,
        job_uid,
        job_class: str,
        job_args: Any = None,
        context: Any = None,
        ttr: int = 0,
        delay: int = 0,
    ) -> int:
        """
        Record a job pushed to a queue.

        Args:
            sender_name: Name of the queue that pushed the job
            job_uid: The queue's identifier for this push
            job_class: Job class or type name
            job_args: Job arguments, stored as JSON
            context: Extra metadata such as a trace id, stored as JSON
            ttr: Time to run limit in seconds
            delay: Delay in seconds before the job becomes available

        Returns:
            ID of the new push record
        """
        async with self._recording("push", sender_name=sender_name, job_uid=job_uid):
            async with Model.transaction() as session:
                push = PushRecord(
                    sender_name=sender_name,
                    job_uid=str(job_uid),
                    job_class=job_class,
                    job_data=encode(job_args if job_args is not None else {}),
                    context=encode(context),
                    ttr=ttr or 0,
                    delay=delay or 0,
                    pushed_at=self.env.now(),
                )
                session.add(push)
                await session.flush()
                push_id = push.id

        logger.debug(f"Push {push_id} recorded for job '{job_uid}' from '{sender_name}'")
        return push_id

    async def begin_exec(
        self,
        sender_name: str,
        job_uid,
        attempt: int,
        worker: Optional[WorkerIdentity] = None,
    ) -> ExecDecision:
        """
        Record the start of an execution attempt.

        The exec row, the push pointers and the worker pointer are written in
        one transaction, so readers never see an exec that its push does not
        point to.

        Args:
            sender_name: Name of the queue running the job
            job_uid: The queue's identifier of the job
            attempt: 1-based attempt number reported by the queue
            worker: Process running the attempt, when workers are tracked

        Returns:
            ExecDecision telling the queue whether to run the job
        """
        async with self._recording("before_exec", sender_name=sender_name, job_uid=job_uid):
            async with Model.transaction() as session:
                push = await session.scalar(push_by_job(sender_name, job_uid))
                if push is None:
                    logger.debug(f"No push found for job '{job_uid}' from '{sender_name}', ignoring")
                    return ExecDecision(Decision.IGNORE)

                if push.is_stopped():
                    logger.info(f"Job '{job_uid}' from '{sender_name}' is stopped, rejecting execution")
                    return ExecDecision(Decision.REJECT)

                now = self.env.now()
                worker_record = await self._find_worker(session, worker)

                exec_record = ExecRecord(
                    push_id=push.id,
                    worker_id=worker_record.id if worker_record else None,
                    attempt=attempt,
                    reserved_at=now,
                )
                session.add(exec_record)
                await session.flush()

                if push.first_exec_id is None:
                    push.first_exec_id = exec_record.id
                push.last_exec_id = exec_record.id

                if worker_record is not None:
                    worker_record.last_exec_id = exec_record.id

                exec_id = exec_record.id

        logger.debug(f"Exec {exec_id} started for push {push.id} (attempt {attempt})")
        return ExecDecision(Decision.PROCEED, exec_id)

    async def end_exec(self, sender_name: str, job_uid) -> None:
        """Record a successfully finished attempt."""
        async with self._recording("after_exec", sender_name=sender_name, job_uid=job_uid):
            async with Model.transaction() as session:
                push = await session.scalar(push_by_job(sender_name, job_uid))
                if push is None or push.last_exec_id is None:
                    logger.debug(f"No exec to close for job '{job_uid}' from '{sender_name}'")
                    return

                await self._close_exec(session, push.last_exec_id, error=None, retry=False)

    async def end_exec_error(self, sender_name: str, job_uid, error: Optional[str], retry: bool) -> bool:
        """
        Record a failed attempt.

        Args:
            sender_name: Name of the queue running the job
            job_uid: The queue's identifier of the job
            error: Error message of the attempt
            retry: Whether the queue intends to retry the job

        Returns:
            Whether the queue may retry. Always False for stopped jobs.
        """
        async with self._recording("after_error", sender_name=sender_name, job_uid=job_uid):
            async with Model.transaction() as session:
                push = await session.scalar(push_by_job(sender_name, job_uid))
                if push is None:
                    logger.debug(f"No push found for job '{job_uid}' from '{sender_name}', ignoring")
                    return retry

                if push.is_stopped() and retry:
                    logger.info(f"Job '{job_uid}' from '{sender_name}' is stopped, suppressing retry")
                    retry = False

                if push.last_exec_id is not None:
                    await self._close_exec(session, push.last_exec_id, error=error, retry=retry)

        return retry

    async def worker_start(self, sender_name: str, host: str, pid: int) -> int:
        """Record a worker process that started listening to a queue."""
        async with self._recording("worker_start", sender_name=sender_name, host=host, pid=pid):
            async with Model.transaction() as session:
                now = self.env.now()
                worker = WorkerRecord(
                    sender_name=sender_name,
                    host=host,
                    pid=pid,
                    started_at=now,
                    pinged_at=now,
                )
                session.add(worker)
                await session.flush()
                worker_id = worker.id

        logger.info(f"Worker {worker_id} started on {host} (PID: {pid})")
        return worker_id

    async def worker_stop(self, host: str, pid: int) -> Optional[int]:
        """
        Record a worker process that exited cleanly.

        Returns:
            ID of the finished worker record, or None if no active one exists
        """
        async with self._recording("worker_stop", host=host, pid=pid):
            # The worker may have outlived its connection
            await Model.reconnect()

            async with Model.transaction() as session:
                worker = await session.scalar(
                    active_worker(host, pid, self.env.now(), self.env.worker_ping_interval)
                )
                if worker is None:
                    logger.warning(f"No active worker found for {host} (PID: {pid})")
                    return None

                worker.finished_at = self.env.now()
                worker_id = worker.id

        logger.info(f"Worker {worker_id} finished on {host} (PID: {pid})")
        return worker_id

    async def worker_ping(self, host: str, pid: int) -> bool:
        """
        Refresh a worker's heartbeat.

        Returns:
            False if an operator asked the worker to stop, True otherwise
        """
        async with self._recording("worker_loop", host=host, pid=pid):
            async with Model.transaction() as session:
                worker = await session.scalar(
                    workers_by_event(host, pid)
                    .where(WorkerRecord.finished_at.is_(None))
                    .order_by(WorkerRecord.id.desc())
                    .limit(1)
                )
                if worker is None:
                    return True

                if worker.is_stopped():
                    logger.info(f"Worker {worker.id} was asked to stop")
                    return False

                worker.pinged_at = self.env.now()

        return True

    async def _find_worker(self, session: AsyncSession, worker: Optional[WorkerIdentity]) -> Optional[WorkerRecord]:
        if worker is None or not self.env.can_track_workers:
            return None

        return await session.scalar(
            active_worker(worker.host, worker.pid, self.env.now(), self.env.worker_ping_interval)
        )

    async def _close_exec(self, session: AsyncSession, exec_id: int, error: Optional[str], retry: bool) -> None:
        result = await session.execute(
            update(ExecRecord)
            .where(ExecRecord.id == exec_id, ExecRecord.finished_at.is_(None))
            .values(finished_at=self.env.now(), error=error, retry=retry)
        )
        if result.rowcount:
            logger.debug(f"Exec {exec_id} closed (error: {error is not None}, retry: {retry})")
        else:
            logger.debug(f"Exec {exec_id} was already closed")
