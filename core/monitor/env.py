import os
import socket
from datetime import datetime, timezone
from typing import Callable, Optional

from core.monitor.cache import Cache

# Seconds added to the ping interval before a silent worker is considered gone
GRACE_PERIOD = 5


def utcnow() -> datetime:
    """Current UTC time as a naive datetime truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


class Env:
    """
    Monitor configuration shared by the recorder, filters and workers.

    Values not passed explicitly are read from the environment, so a loaded
    .env file configures the monitor without code changes.
    """

    def __init__(
        self,
        worker_ping_interval: Optional[int] = None,
        cache_duration: Optional[int] = None,
        can_track_workers: Optional[bool] = None,
        expose_has_fails: Optional[bool] = None,
        host: Optional[str] = None,
        cache=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            worker_ping_interval: Seconds between worker heartbeats, 0 disables
                heartbeat based liveness
            cache_duration: Seconds aggregate lookups stay cached
            can_track_workers: Record worker lifetimes and attach them to execs
            expose_has_fails: Offer the "failed" scope in job filters
            host: Host name recorded on worker rows
            cache: Cache used for aggregate lookups
            clock: Callable returning the current naive UTC datetime
        """
        if worker_ping_interval is None:
            worker_ping_interval = int(os.getenv("MONITOR_PING_INTERVAL", "15"))
        if cache_duration is None:
            cache_duration = int(os.getenv("MONITOR_CACHE_DURATION", "3600"))
        if can_track_workers is None:
            can_track_workers = os.getenv("MONITOR_TRACK_WORKERS", "true").lower() == "true"
        if expose_has_fails is None:
            expose_has_fails = os.getenv("MONITOR_EXPOSE_HAS_FAILS", "false").lower() == "true"

        self.worker_ping_interval = worker_ping_interval
        self.cache_duration = cache_duration
        self.can_track_workers = can_track_workers
        self.expose_has_fails = expose_has_fails
        self._host = host
        self.clock = clock

        self.cache = cache if cache is not None else Cache()

    def now(self) -> datetime:
        return self.clock()

    def can_listen_worker_loop(self) -> bool:
        """Whether workers are expected to send heartbeats."""
        return bool(self.worker_ping_interval)

    def get_host(self) -> str:
        if self._host is None:
            self._host = os.getenv("HOSTNAME") or socket.gethostname() or "127.0.0.1"
        return self._host

    def __repr__(self):
        return (
            f"<Env(ping_interval={self.worker_ping_interval}, "
            f"track_workers={self.can_track_workers}, cache_duration={self.cache_duration})>"
        )
