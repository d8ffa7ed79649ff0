"""Exceptions raised by arrivalboard."""

from typing import Sequence


class ArrivalBoardError(Exception):
    """Base class for all arrivalboard errors."""


class StationNotFoundError(ArrivalBoardError, ValueError):
    """A station name is not present in the station index."""

    def __init__(self, name: str):
        super().__init__(f"No station found matching '{name}'")
        self.name = name


class StationResolutionError(ArrivalBoardError, ValueError):
    """Neither station names nor stop ids resolved to any base stop id."""

    def __init__(self, unknown_stations: Sequence[str] = ()):
        message = "No stop_ids resolved. Provide station=Clark St[,High St] and/or stop_ids=A40N,..."
        super().__init__(message)
        self.unknown_stations = list(unknown_stations)


class FeedError(ArrivalBoardError):
    """A feed source could not be fetched or decoded."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Feed {source} failed: {reason}")
        self.source = source
        self.reason = reason
