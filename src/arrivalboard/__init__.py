"""arrivalboard - Per-station subway arrivals from GTFS-Realtime feeds."""

__version__ = "0.1.0"

from .models import FeedEntity, RawEvent, ResolvedArrival, SourceOutcome, StopTimeEvent, StopTimeUpdate, TripUpdate
from .exceptions import ArrivalBoardError, FeedError, StationNotFoundError, StationResolutionError
from .station_index import StationIndex
from .time_resolver import EPOCH_GUESS_THRESHOLD, TimePolicy, resolve_arrival
from .aggregator import ArrivalAggregator
from .speech import SpeechFormatter
from .feed_client import FeedClient
from .arrival_tracker import ArrivalQuery, ArrivalTracker

__all__ = [
    "ArrivalTracker",
    "ArrivalQuery",
    "ArrivalAggregator",
    "StationIndex",
    "SpeechFormatter",
    "FeedClient",
    "TimePolicy",
    "resolve_arrival",
    "EPOCH_GUESS_THRESHOLD",
    "FeedEntity",
    "TripUpdate",
    "StopTimeUpdate",
    "StopTimeEvent",
    "RawEvent",
    "ResolvedArrival",
    "SourceOutcome",
    "ArrivalBoardError",
    "FeedError",
    "StationNotFoundError",
    "StationResolutionError",
]
