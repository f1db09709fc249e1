"""
Status classification of pushed jobs.

Every scope is an independent predicate over a push and its last exec, so a
push can sit in several scopes at once (a stopped job can also be done, a
successful job can also have failed attempts). Each scope exists twice with
the same meaning: as a plain function for records already loaded, and as a
SQLAlchemy clause over the push table outer-joined to ``LastExec``.
"""

from typing import Dict, Optional, Set

from sqlalchemy import and_, false, or_, select
from sqlalchemy.orm import aliased

from app.models.exec_record import ExecRecord
from app.models.push_record import PushRecord

WAITING = "waiting"
IN_PROGRESS = "in-progress"
DONE = "done"
SUCCESS = "success"
BURIED = "buried"
FAILED = "failed"
STOPPED = "stopped"

LABELS: Dict[str, str] = {
    WAITING: "Waiting",
    IN_PROGRESS: "In progress",
    DONE: "Done",
    SUCCESS: "Done successfully",
    BURIED: "Buried",
    FAILED: "Has failed attempts",
    STOPPED: "Stopped",
}

# Label for a push whose last_exec_id points to a missing exec row
UNKNOWN_LABEL = "Unknown"

# Exec row referenced by push.last_exec_id
LastExec = aliased(ExecRecord, name="last_exec")


# Record predicates

def is_waiting(push: PushRecord, last_exec: Optional[ExecRecord]) -> bool:
    if push.stopped_at is not None:
        return False
    return push.last_exec_id is None or (last_exec is not None and last_exec.retry is True)


def is_in_progress(push: PushRecord, last_exec: Optional[ExecRecord]) -> bool:
    return push.last_exec_id is not None and last_exec is not None and last_exec.finished_at is None


def is_done(push: PushRecord, last_exec: Optional[ExecRecord]) -> bool:
    return last_exec is not None and last_exec.finished_at is not None and last_exec.retry is False


def is_success(push: PushRecord, last_exec: Optional[ExecRecord]) -> bool:
    return is_done(push, last_exec) and last_exec.error is None


def is_buried(push: PushRecord, last_exec: Optional[ExecRecord]) -> bool:
    return is_done(push, last_exec) and last_exec.error is not None


def is_stopped(push: PushRecord, last_exec: Optional[ExecRecord] = None) -> bool:
    return push.stopped_at is not None


def scopes_of(push: PushRecord, last_exec: Optional[ExecRecord], has_fails: bool = False) -> Set[str]:
    """
    All scopes a push belongs to.

    Args:
        push: The push record
        last_exec: The exec referenced by push.last_exec_id, if any
        has_fails: Whether any exec of the push recorded an error

    Returns:
        Set of scope names
    """
    scopes = set()
    if is_waiting(push, last_exec):
        scopes.add(WAITING)
    if is_in_progress(push, last_exec):
        scopes.add(IN_PROGRESS)
    if is_done(push, last_exec):
        scopes.add(DONE)
    if is_success(push, last_exec):
        scopes.add(SUCCESS)
    if is_buried(push, last_exec):
        scopes.add(BURIED)
    if has_fails:
        scopes.add(FAILED)
    if is_stopped(push, last_exec):
        scopes.add(STOPPED)
    return scopes


def status_label(push: PushRecord, last_exec: Optional[ExecRecord]) -> str:
    """
    Single label for list views, picking the most telling scope.

    Returns UNKNOWN_LABEL when no labelled scope matches, which only happens
    when the last exec row is missing.
    """
    if is_stopped(push, last_exec):
        return LABELS[STOPPED]
    if is_in_progress(push, last_exec):
        return LABELS[IN_PROGRESS]
    if is_waiting(push, last_exec):
        return LABELS[WAITING]
    if is_buried(push, last_exec):
        return LABELS[BURIED]
    if is_success(push, last_exec):
        return LABELS[SUCCESS]
    return UNKNOWN_LABEL


# SQL clauses; statements must outer join LastExec on push.last_exec_id

def join_last_exec(stmt):
    return stmt.outerjoin(LastExec, LastExec.id == PushRecord.last_exec_id)


def waiting_clause():
    return and_(
        or_(PushRecord.last_exec_id.is_(None), LastExec.retry.is_(True)),
        PushRecord.stopped_at.is_(None),
    )


def in_progress_clause():
    return and_(
        PushRecord.last_exec_id.isnot(None),
        LastExec.id.isnot(None),
        LastExec.finished_at.is_(None),
    )


def done_clause():
    return and_(LastExec.finished_at.isnot(None), LastExec.retry.is_(False))


def success_clause():
    return and_(done_clause(), LastExec.error.is_(None))


def buried_clause():
    return and_(done_clause(), LastExec.error.isnot(None))


def has_fails_clause():
    return (
        select(ExecRecord.id)
        .where(
            ExecRecord.push_id == PushRecord.id,
            ExecRecord.error.isnot(None),
        )
        .exists()
    )


def stopped_clause():
    return PushRecord.stopped_at.isnot(None)


CLAUSES = {
    WAITING: waiting_clause,
    IN_PROGRESS: in_progress_clause,
    DONE: done_clause,
    SUCCESS: success_clause,
    BURIED: buried_clause,
    FAILED: has_fails_clause,
    STOPPED: stopped_clause,
}


def scope_clause(name: str):
    """SQL clause for a scope name; unknown names match nothing."""
    factory = CLAUSES.get(name)
    if factory is None:
        return false()
    return factory()
