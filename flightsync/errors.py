"""Exception types raised while syncing flight schedules."""


class FlightSyncError(Exception):
    """Base class for all flight sync errors."""


class SourceUnavailable(FlightSyncError):
    """An external source could not be reached or returned an error status."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class MalformedPayload(FlightSyncError):
    """An external source answered with a payload of unexpected shape."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class ValidationRejected(FlightSyncError):
    """A merged record cannot be written (missing identity field or unknown airport)."""

    def __init__(self, flight_number: str | None, reason: str):
        super().__init__(f"{flight_number or '<unknown>'}: {reason}")
        self.flight_number = flight_number
        self.reason = reason


class StoreUnavailable(FlightSyncError):
    """The relational store could not be reached or written."""


class DuplicateKey(FlightSyncError):
    """A write conflicts with a unique key already in the store."""
