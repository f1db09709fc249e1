"""
Queue monitor - records what a job queue does and derives job and worker status.
"""

from core.monitor.env import Env, GRACE_PERIOD
from core.monitor.errors import MonitorError, EventRecordingError
from core.monitor.recorder import EventRecorder, Decision, ExecDecision, WorkerIdentity
from core.monitor.behavior import QueueMonitor
from core.monitor.repository import MonitorRepository
from core.monitor.filters import JobFilter, WorkerFilter
from core.monitor.cache import Cache

__all__ = [
    "Env",
    "GRACE_PERIOD",
    "MonitorError",
    "EventRecordingError",
    "EventRecorder",
    "Decision",
    "ExecDecision",
    "WorkerIdentity",
    "QueueMonitor",
    "MonitorRepository",
    "JobFilter",
    "WorkerFilter",
    "Cache",
]
