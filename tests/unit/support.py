import os
import tempfile
import unittest
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from sqlalchemy import func, select

import app.models  # noqa: F401
from app.models.exec_record import ExecRecord
from app.models.push_record import PushRecord
from app.models.worker_record import WorkerRecord
from core.model import Model
from core.monitor.cache import Cache
from core.monitor.env import Env
from core.monitor.recorder import EventRecorder
from core.monitor.repository import MonitorRepository


class FakeClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)

    def set(self, hour, minute, second=0):
        self.current = datetime(2024, 1, 1, hour, minute, second)


def disabled_redis():
    redis = MagicMock()
    redis.is_enabled.return_value = False
    return redis


class MonitorTestCase(unittest.IsolatedAsyncioTestCase):
    """Runs each test against a fresh SQLite database file."""

    ping_interval = 15
    expose_has_fails = True

    async def asyncSetUp(self):
        self._tmp_dir = tempfile.TemporaryDirectory()
        Model.configure(f"sqlite+aiosqlite:///{os.path.join(self._tmp_dir.name, 'monitor.db')}")
        await Model.create_tables()

        self.clock = FakeClock()
        self.cache_time = [1000.0]
        self.env = Env(
            worker_ping_interval=self.ping_interval,
            cache_duration=60,
            can_track_workers=True,
            expose_has_fails=self.expose_has_fails,
            host="worker-host",
            cache=Cache(redis=disabled_redis(), clock=lambda: self.cache_time[0]),
            clock=self.clock,
        )
        self.recorder = EventRecorder(self.env)
        self.repository = MonitorRepository(self.env)

    async def asyncTearDown(self):
        await Model.cleanup()
        self._tmp_dir.cleanup()

    async def load(self, model_class, record_id):
        return await Model.find(model_class, record_id)

    async def load_push(self, push_id) -> PushRecord:
        return await self.load(PushRecord, push_id)

    async def load_exec(self, exec_id) -> ExecRecord:
        return await self.load(ExecRecord, exec_id)

    async def load_worker(self, worker_id) -> WorkerRecord:
        return await self.load(WorkerRecord, worker_id)

    async def count(self, model_class) -> int:
        async with await Model.get_session() as session:
            return await session.scalar(select(func.count(model_class.id)))

    async def scopes_of(self, push_id):
        return await self.repository.classify(await self.load_push(push_id))
