class MonitorError(Exception):
    """Base class for queue monitor errors."""


class EventRecordingError(MonitorError):
    """
    A lifecycle event could not be stored.

    Raised from the underlying storage exception. The queue that emitted the
    event must treat it as a failure, since the monitor records would no
    longer match what the queue did.
    """

    def __init__(self, event: str, **identifiers):
        self.event = event
        self.identifiers = identifiers
        details = ", ".join(f"{key}={value!r}" for key, value in identifiers.items())
        super().__init__(f"Failed to record '{event}' event ({details})")
