from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Index
from core.model import Base


class WorkerRecord(Base):
    """Model for queue_worker table - one row per worker process lifetime."""

    __tablename__ = "queue_worker"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_name = Column(String(32), nullable=False)
    host = Column(String(64), nullable=False)
    pid = Column(Integer, nullable=False)
    started_at = Column(DateTime, nullable=False)
    pinged_at = Column(DateTime, nullable=False)
    stopped_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    last_exec_id = Column(Integer, nullable=True)

    __table_args__ = (
        Index('queue_worker_host_pid_index', 'host', 'pid'),
    )

    def is_stopped(self) -> bool:
        """Whether an operator asked this worker to stop."""
        return self.stopped_at is not None

    def stop(self, now: datetime) -> None:
        if self.stopped_at is None:
            self.stopped_at = now

    def duration(self, now: datetime) -> int:
        end = self.finished_at or now
        return int((end - self.started_at).total_seconds())

    def is_idle(self, last_exec=None) -> bool:
        return last_exec is None or last_exec.finished_at is not None

    def status(self, now: datetime, last_exec=None) -> str:
        """Short human readable description of what the worker is doing."""
        if last_exec is None:
            return f"Idle since {_ago(now, self.started_at)}."
        if last_exec.finished_at is not None:
            return f"Idle after a job since {_ago(now, last_exec.finished_at)}."
        return f"Busy since {_ago(now, last_exec.reserved_at)}."

    def __repr__(self):
        return f"<WorkerRecord(id={self.id}, host='{self.host}', pid={self.pid})>"


def _ago(now: datetime, moment: datetime) -> str:
    seconds = max(int((now - moment).total_seconds()), 0)
    if seconds < 60:
        return f"{seconds} seconds ago"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    return f"{seconds // 3600} hours ago"
