import json
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from core.model import Base


class PushRecord(Base):
    """Model for queue_push table - one row per job pushed to a queue."""

    __tablename__ = "queue_push"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_name = Column(String(32), nullable=False)
    job_uid = Column(String(32), nullable=False)
    job_class = Column(String(255), nullable=False)
    job_data = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    ttr = Column(Integer, nullable=False, default=0)
    delay = Column(Integer, nullable=False, default=0)
    pushed_at = Column(DateTime, nullable=False)
    stopped_at = Column(DateTime, nullable=True)
    first_exec_id = Column(Integer, nullable=True)
    last_exec_id = Column(Integer, nullable=True)

    __table_args__ = (
        Index('queue_push_job_index', 'sender_name', 'job_uid'),
        Index('queue_push_pushed_at_index', 'pushed_at'),
        Index('queue_push_last_exec_index', 'last_exec_id'),
    )

    @property
    def args(self):
        """Job arguments decoded from the stored JSON."""
        return json.loads(self.job_data) if self.job_data else {}

    @property
    def context_data(self):
        return json.loads(self.context) if self.context else {}

    def is_stopped(self) -> bool:
        return self.stopped_at is not None

    def can_stop(self, last_exec=None) -> bool:
        """A push can be stopped while it may still run again."""
        if self.is_stopped():
            return False
        if last_exec is None:
            return True
        return last_exec.finished_at is None or bool(last_exec.retry)

    def stop(self, now: datetime) -> None:
        if self.stopped_at is None:
            self.stopped_at = now

    def __repr__(self):
        return f"<PushRecord(id={self.id}, sender='{self.sender_name}', job_uid='{self.job_uid}')>"
