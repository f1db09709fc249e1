import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import false, func, or_, select

from app.models.exec_record import ExecRecord
from app.models.push_record import PushRecord
from app.models.worker_record import WorkerRecord
from core.model import Model
from core.monitor import scopes
from core.monitor.env import Env
from core.monitor.liveness import active_clause

logger = logging.getLogger("QueueMonitor.JobFilter")


class JobFilter:
    """
    Dashboard filter over pushed jobs.

    Invalid input never widens the result: a filter with errors matches no
    rows and reports the problem per field in ``errors``.
    """

    DATETIME_FORMAT = "%Y-%m-%dT%H:%M"

    def __init__(
        self,
        env: Optional[Env] = None,
        is_: Optional[str] = None,
        sender: Optional[str] = None,
        class_: Optional[str] = None,
        contains: Optional[str] = None,
        pushed_after: Optional[str] = None,
        pushed_before: Optional[str] = None,
    ):
        self.env = env or Env()
        self.is_ = is_
        self.sender = sender
        self.class_ = class_
        self.contains = contains
        self.pushed_after = pushed_after
        self.pushed_before = pushed_before
        self.errors: Dict[str, List[str]] = {}

    @classmethod
    def from_params(cls, params: Dict[str, Any], env: Optional[Env] = None) -> "JobFilter":
        """Build a filter from request style parameters ("is", "class", ...)."""
        return cls(
            env=env,
            is_=params.get("is"),
            sender=params.get("sender"),
            class_=params.get("class"),
            contains=params.get("contains"),
            pushed_after=params.get("pushed_after"),
            pushed_before=params.get("pushed_before"),
        )

    def scope_list(self) -> Dict[str, str]:
        """Scopes offered to operators, with their labels."""
        names = [scopes.WAITING, scopes.IN_PROGRESS, scopes.DONE, scopes.SUCCESS, scopes.BURIED]
        if self.env.expose_has_fails:
            names.append(scopes.FAILED)
        names.append(scopes.STOPPED)
        return {name: scopes.LABELS[name] for name in names}

    def add_error(self, field: str, message: str) -> None:
        self.errors.setdefault(field, []).append(message)

    def has_errors(self) -> bool:
        return bool(self.errors)

    def validate(self) -> bool:
        """
        Normalize and check every field.

        Returns:
            True if the filter is valid
        """
        self.errors = {}

        self.is_ = self._clean_string("is", self.is_, trim=False)
        self.sender = self._clean_string("sender", self.sender)
        self.class_ = self._clean_string("class", self.class_)
        self.contains = self._clean_string("contains", self.contains)
        self.pushed_after = self._clean_string("pushed_after", self.pushed_after)
        self.pushed_before = self._clean_string("pushed_before", self.pushed_before)

        if self.is_ is not None and "is" not in self.errors and self.is_ not in self.scope_list():
            self.add_error("is", "Scope is invalid.")

        for field in ("pushed_after", "pushed_before"):
            value = getattr(self, field)
            if value is not None and field not in self.errors and self.parse_datetime(value) is None:
                self.add_error(field, f"The format of {field.replace('_', ' ').title()} is invalid.")

        if self.errors:
            logger.debug(f"Job filter rejected: {self.errors}")
        return not self.errors

    def _clean_string(self, field: str, value: Any, trim: bool = True) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            self.add_error(field, f"{field} must be a string.")
            return None
        if trim:
            value = value.strip()
        return value or None

    @classmethod
    def parse_datetime(cls, value: str, is_end: bool = False) -> Optional[datetime]:
        """
        Parse a minute precision timestamp.

        Args:
            value: Timestamp formatted as YYYY-MM-DDTHH:MM
            is_end: Return the last second of the minute instead of the first

        Returns:
            Parsed datetime or None if the value is malformed
        """
        try:
            moment = datetime.strptime(value, cls.DATETIME_FORMAT)
        except (TypeError, ValueError):
            return None
        if is_end:
            moment += timedelta(seconds=59)
        return moment

    def apply(self, stmt):
        """Add the filter's joins and conditions to a statement over pushes."""
        stmt = scopes.join_last_exec(stmt)
        if not self.validate():
            return stmt.where(false())

        if self.sender:
            stmt = stmt.where(PushRecord.sender_name == self.sender)
        if self.class_:
            stmt = stmt.where(PushRecord.job_class.contains(self.class_, autoescape=True))
        if self.contains:
            stmt = stmt.where(or_(
                PushRecord.job_data.contains(self.contains, autoescape=True),
                PushRecord.context.contains(self.contains, autoescape=True),
            ))
        if self.pushed_after:
            stmt = stmt.where(PushRecord.pushed_at >= self.parse_datetime(self.pushed_after))
        if self.pushed_before:
            stmt = stmt.where(PushRecord.pushed_at <= self.parse_datetime(self.pushed_before, is_end=True))
        if self.is_:
            stmt = stmt.where(scopes.scope_clause(self.is_))

        return stmt

    def search(self):
        """Statement selecting matching pushes, newest first."""
        return self.apply(select(PushRecord)).order_by(PushRecord.id.desc())

    async def fetch(self, page: int = 1, per_page: int = 20) -> List[PushRecord]:
        """One page of matching pushes."""
        stmt = self.search().offset(max(page - 1, 0) * per_page).limit(per_page)
        async with await Model.get_session(primary=False) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def fetch_with_last_exec(
        self, page: int = 1, per_page: int = 20
    ) -> List[Tuple[PushRecord, Optional[ExecRecord]]]:
        """One page of matching pushes paired with their last exec."""
        stmt = (
            self.apply(select(PushRecord, scopes.LastExec))
            .order_by(PushRecord.id.desc())
            .offset(max(page - 1, 0) * per_page)
            .limit(per_page)
        )
        async with await Model.get_session(primary=False) as session:
            result = await session.execute(stmt)
            return [(push, last_exec) for push, last_exec in result.all()]

    async def count(self) -> int:
        stmt = self.apply(select(func.count(PushRecord.id)).select_from(PushRecord))
        async with await Model.get_session(primary=False) as session:
            return await session.scalar(stmt) or 0

    async def search_classes(self) -> List[Tuple[str, int]]:
        """Matching pushes counted per job class, ordered by class name."""
        return await self._grouped("classes", PushRecord.job_class)

    async def search_senders(self) -> List[Tuple[str, int]]:
        """Matching pushes counted per sender, ordered by sender name."""
        return await self._grouped("senders", PushRecord.sender_name)

    async def class_list(self) -> List[str]:
        """All job classes ever pushed."""
        return await self._distinct("class_list", PushRecord.job_class)

    async def sender_list(self) -> List[str]:
        """All senders that ever pushed a job."""
        return await self._distinct("sender_list", PushRecord.sender_name)

    async def _grouped(self, name: str, column) -> List[Tuple[str, int]]:
        if not self.validate():
            return []

        async def load():
            stmt = (
                self.apply(select(column, func.count(PushRecord.id)).select_from(PushRecord))
                .group_by(column)
                .order_by(column.asc())
            )
            async with await Model.get_session(primary=False) as session:
                result = await session.execute(stmt)
                return [[value, count] for value, count in result.all()]

        rows = await self.env.cache.get_or_set(
            f"job_filter:{name}:{self.cache_key()}", load, self.env.cache_duration
        )
        return [(value, count) for value, count in rows]

    async def _distinct(self, name: str, column) -> List[str]:
        async def load():
            stmt = select(column).distinct().order_by(column.asc())
            async with await Model.get_session(primary=False) as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())

        return await self.env.cache.get_or_set(f"job_filter:{name}", load, self.env.cache_duration)

    def cache_key(self) -> str:
        """Stable digest of the normalized filter values."""
        values = {
            "is": self.is_,
            "sender": self.sender,
            "class": self.class_,
            "contains": self.contains,
            "pushed_after": self.pushed_after,
            "pushed_before": self.pushed_before,
        }
        encoded = json.dumps(values, sort_keys=True).encode("utf-8")
        return hashlib.sha1(encoded).hexdigest()


class WorkerFilter:
    """Listing of worker processes, newest first."""

    def __init__(self, env: Optional[Env] = None, sender: Optional[str] = None, active_only: bool = True):
        self.env = env or Env()
        self.sender = sender
        self.active_only = active_only

    def search(self):
        stmt = select(WorkerRecord)
        if self.sender:
            stmt = stmt.where(WorkerRecord.sender_name == self.sender)
        if self.active_only:
            stmt = stmt.where(active_clause(self.env.now(), self.env.worker_ping_interval))
        return stmt.order_by(WorkerRecord.id.desc())

    async def fetch(self, page: int = 1, per_page: int = 20) -> List[WorkerRecord]:
        stmt = self.search().offset(max(page - 1, 0) * per_page).limit(per_page)
        async with await Model.get_session(primary=False) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
