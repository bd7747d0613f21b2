"""Error types raised while loading, replaying and querying the canvas log."""


class PlaceReplayError(Exception):
    """Base class for every error the tool raises on purpose."""


# exceptions keep their constructor args in self.args so they pickle
# cleanly out of decode worker processes
class MalformedRecord(PlaceReplayError):
    """A log line could not be decoded."""

    def __init__(self, line_number: int | None, reason: str = "malformed line") -> None:
        super().__init__(line_number, reason)
        self.line_number = line_number
        self.reason = reason

    def __str__(self) -> str:
        if self.line_number is None:
            return f"malformed record: {self.reason}"
        return f"malformed record on line {self.line_number}: {self.reason}"


class OutOfOrderInput(PlaceReplayError):
    """An event's timestamp went backwards during replay."""

    def __init__(self, line_number: int | None, timestamp: int, previous: int) -> None:
        super().__init__(line_number, timestamp, previous)
        self.line_number = line_number
        self.timestamp = timestamp
        self.previous = previous

    def __str__(self) -> str:
        where = f"line {self.line_number}" if self.line_number is not None else "unknown line"
        return (
            f"out of order input on {where}: timestamp {self.timestamp} "
            f"is before previous timestamp {self.previous}"
        )


class UnknownUser(PlaceReplayError, KeyError):
    """Query for a user id that never appeared in the log."""

    def __init__(self, user_id: str) -> None:
        super().__init__(user_id)
        self.user_id = user_id

    def __str__(self) -> str:
        return f"no data for user: {self.user_id}"


class InvalidAreaBounds(PlaceReplayError, ValueError):
    """A configured search area has impossible bounds."""

    def __init__(self, area_name: str, reason: str) -> None:
        super().__init__(area_name, reason)
        self.area_name = area_name
        self.reason = reason

    def __str__(self) -> str:
        return f"invalid bounds for search area {self.area_name!r}: {self.reason}"


class ConfigurationError(PlaceReplayError):
    """The configuration file or environment could not be turned into settings."""


class PipelineStateError(PlaceReplayError):
    """Ingestion or a query was attempted in the wrong phase."""
