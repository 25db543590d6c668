"""Error types raised by the time tracker core."""


class TimeTrackerError(Exception):
    """Base class for all time tracker errors."""


class NotFoundError(TimeTrackerError):
    """A referenced session does not exist."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class MalformedAttributesError(TimeTrackerError):
    """An attribute map cannot be flattened (e.g. it references itself)."""


class StoreUnavailableError(TimeTrackerError):
    """The backing store could not be read or written."""
