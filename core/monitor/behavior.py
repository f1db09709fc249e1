import asyncio
import logging
import os
from typing import Any, Optional, Union

from core.monitor.env import Env
from core.monitor.recorder import Decision, EventRecorder, ExecDecision, WorkerIdentity

logger = logging.getLogger("QueueMonitor.Behavior")


class QueueMonitor:
    """
    Monitor attached to one named queue.

    The queue calls one method per lifecycle event and must honour the
    results: a rejected job is skipped, and a retry is only scheduled when
    after_error() allows it.
    """

    def __init__(
        self,
        sender_name: Optional[str] = None,
        env: Optional[Env] = None,
        recorder: Optional[EventRecorder] = None,
    ):
        """
        Initialize the monitor.

        Args:
            sender_name: Name of the queue, stored on every record
            env: Monitor configuration
            recorder: Event recorder to write through
        """
        self.sender_name = sender_name or os.getenv("MONITOR_SENDER", "queue")
        self.env = env or Env()
        self.recorder = recorder or EventRecorder(self.env)

    def _worker(self, pid: Optional[int]) -> Optional[WorkerIdentity]:
        if not self.env.can_track_workers or not pid:
            return None
        return WorkerIdentity(self.env.get_host(), pid)

    async def push(
        self,
        job_uid,
        job_class: str,
        job_args: Any = None,
        context: Any = None,
        ttr: int = 0,
        delay: int = 0,
    ) -> int:
        """Handle a job pushed to the queue."""
        return await self.recorder.record_push(
            self.sender_name, job_uid, job_class, job_args, context, ttr, delay
        )

    async def before_exec(self, job_uid, attempt: int, pid: Optional[int] = None) -> ExecDecision:
        """
        Handle a job about to run.

        Args:
            job_uid: The queue's identifier of the job
            attempt: 1-based attempt number
            pid: PID of the worker process running the job, if any
        """
        if job_uid is None:
            return ExecDecision(Decision.IGNORE)
        return await self.recorder.begin_exec(self.sender_name, job_uid, attempt, self._worker(pid))

    async def after_exec(self, job_uid) -> None:
        """Handle a job that finished successfully."""
        if job_uid is None:
            return
        await self.recorder.end_exec(self.sender_name, job_uid)

    async def after_error(self, job_uid, error: Union[str, BaseException, None], retry: bool) -> bool:
        """
        Handle a failed attempt.

        Args:
            job_uid: The queue's identifier of the job
            error: Error message or the exception raised by the job
            retry: Whether the queue wants to retry the job

        Returns:
            Whether the queue is allowed to retry
        """
        if job_uid is None:
            return retry
        if isinstance(error, BaseException):
            error = f"{error.__class__.__name__}: {str(error)}"
        return await self.recorder.end_exec_error(self.sender_name, job_uid, error, retry)

    async def worker_start(self, pid: int) -> Optional[int]:
        if not self.env.can_track_workers:
            return None
        return await self.recorder.worker_start(self.sender_name, self.env.get_host(), pid)

    async def worker_stop(self, pid: int) -> Optional[int]:
        if not self.env.can_track_workers:
            return None
        return await self.recorder.worker_stop(self.env.get_host(), pid)

    async def worker_loop(self, pid: int) -> bool:
        """
        Send one heartbeat.

        Returns:
            False when the worker should stop
        """
        if not self.env.can_track_workers or not self.env.can_listen_worker_loop():
            return True
        return await self.recorder.worker_ping(self.env.get_host(), pid)

    async def heartbeat(self, pid: int, stop_event: asyncio.Event) -> None:
        """
        Ping every configured interval until stop_event is set.

        Sets stop_event itself when an operator asks the worker to stop.
        """
        if not self.env.can_track_workers or not self.env.can_listen_worker_loop():
            return

        interval = self.env.worker_ping_interval
        logger.info(f"Heartbeat started for worker PID {pid} every {interval}s")

        while not stop_event.is_set():
            try:
                if not await self.worker_loop(pid):
                    logger.info(f"Stop requested for worker PID {pid}")
                    stop_event.set()
                    break
            except Exception as e:
                # Retried on the next beat; the worker keeps running
                logger.error(f"Heartbeat failed for worker PID {pid}: {str(e)}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Heartbeat stopped for worker PID {pid}")
