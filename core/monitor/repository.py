import logging
from typing import Dict, List, Optional, Set

from sqlalchemy import func, select

from app.models.exec_record import ExecRecord
from app.models.push_record import PushRecord
from app.models.worker_record import WorkerRecord
from core.model import Model
from core.monitor import scopes
from core.monitor.env import Env
from core.monitor.queries import execs_by_push, push_by_job

logger = logging.getLogger("QueueMonitor.Repository")


class MonitorRepository:
    """Point lookups and operator actions over the monitor records."""

    def __init__(self, env: Optional[Env] = None):
        self.env = env or Env()

    async def find_push(self, sender_name: str, job_uid) -> Optional[PushRecord]:
        """Newest push for a queue's job id."""
        async with await Model.get_session() as session:
            return await session.scalar(push_by_job(sender_name, job_uid))

    async def get_push(self, push_id: int) -> Optional[PushRecord]:
        return await Model.find(PushRecord, push_id)

    async def get_exec(self, exec_id: Optional[int]) -> Optional[ExecRecord]:
        if exec_id is None:
            return None
        return await Model.find(ExecRecord, exec_id)

    async def get_execs(self, push_id: int) -> List[ExecRecord]:
        """All attempts of a push, oldest first."""
        async with await Model.get_session(primary=False) as session:
            result = await session.execute(execs_by_push(push_id))
            return list(result.scalars().all())

    async def has_fails(self, push_id: int) -> bool:
        async with await Model.get_session(primary=False) as session:
            count = await session.scalar(
                select(func.count(ExecRecord.id)).where(
                    ExecRecord.push_id == push_id,
                    ExecRecord.error.isnot(None),
                )
            )
            return bool(count)

    async def classify(self, push: PushRecord) -> Set[str]:
        """Scopes the push currently belongs to."""
        last_exec = await self.get_exec(push.last_exec_id)
        return scopes.scopes_of(push, last_exec, await self.has_fails(push.id))

    async def stop_push(self, push_id: int) -> bool:
        """
        Forbid any further execution or retry of a push.

        Stopping an already stopped push keeps the original stop time.

        Returns:
            True if the push exists
        """
        async with Model.transaction() as session:
            push = await session.get(PushRecord, push_id)
            if push is None:
                logger.warning(f"Cannot stop push {push_id} - not found")
                return False

            if push.is_stopped():
                logger.debug(f"Push {push_id} is already stopped")
                return True

            push.stop(self.env.now())

        logger.info(f"Push {push_id} stopped")
        return True

    async def get_worker(self, worker_id: int) -> Optional[WorkerRecord]:
        return await Model.find(WorkerRecord, worker_id)

    async def stop_worker(self, worker_id: int) -> bool:
        """
        Ask a worker to stop. The worker exits on its next heartbeat.

        Returns:
            True if the worker exists
        """
        async with Model.transaction() as session:
            worker = await session.get(WorkerRecord, worker_id)
            if worker is None:
                logger.warning(f"Cannot stop worker {worker_id} - not found")
                return False

            if worker.is_stopped():
                logger.debug(f"Worker {worker_id} was already asked to stop")
                return True

            worker.stop(self.env.now())

        logger.info(f"Worker {worker_id} asked to stop")
        return True

    async def worker_exec_totals(self, worker_id: int) -> Dict[str, int]:
        """Number of attempts a worker started and finished."""
        async with await Model.get_session(primary=False) as session:
            started = await session.scalar(
                select(func.count(ExecRecord.id)).where(ExecRecord.worker_id == worker_id)
            )
            done = await session.scalar(
                select(func.count(ExecRecord.id)).where(
                    ExecRecord.worker_id == worker_id,
                    ExecRecord.finished_at.isnot(None),
                )
            )

        return {
            "worker_id": worker_id,
            "started": started or 0,
            "done": done or 0,
        }
