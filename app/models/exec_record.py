from datetime import datetime
from typing import Optional
from sqlalchemy import Boolean, Column, Integer, Text, DateTime, Index
from core.model import Base


class ExecRecord(Base):
    """Model for queue_exec table - one row per execution attempt of a push."""

    __tablename__ = "queue_exec"

    id = Column(Integer, primary_key=True, autoincrement=True)
    push_id = Column(Integer, nullable=False)
    worker_id = Column(Integer, nullable=True)
    attempt = Column(Integer, nullable=False)
    reserved_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)
    # Unset until the attempt is closed
    retry = Column(Boolean, nullable=True)

    __table_args__ = (
        Index('queue_exec_push_id_index', 'push_id'),
        Index('queue_exec_worker_id_index', 'worker_id'),
    )

    def is_open(self) -> bool:
        return self.finished_at is None

    def duration(self, now: Optional[datetime] = None) -> Optional[int]:
        """Seconds spent on the attempt, counted up to now while it is open."""
        end = self.finished_at or now
        if end is None:
            return None
        return int((end - self.reserved_at).total_seconds())

    def __repr__(self):
        return f"<ExecRecord(id={self.id}, push_id={self.push_id}, attempt={self.attempt})>"
