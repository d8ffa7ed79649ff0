"""Data models for the arrival aggregation engine."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

STATUS_SCHEDULED = "scheduled"
STATUS_APPROACHING = "approaching"

DIRECTION_NORTH = "N"
DIRECTION_SOUTH = "S"
DIRECTIONS = (DIRECTION_NORTH, DIRECTION_SOUTH)


@dataclass
class StopTimeEvent:
    """Arrival or departure sub-record of a stop-time update."""
    time: Optional[int] = None  # Unix timestamp
    delay: Optional[int] = None  # Seconds, sometimes an epoch in disguise


@dataclass
class StopTimeUpdate:
    """Prediction for one stop of a trip."""
    stop_id: Optional[str] = None
    arrival: Optional[StopTimeEvent] = None
    departure: Optional[StopTimeEvent] = None


@dataclass
class TripUpdate:
    """Real-time update for a single trip."""
    route_id: Optional[str] = None
    stop_time_updates: List[StopTimeUpdate] = field(default_factory=list)


@dataclass
class FeedEntity:
    """One decoded feed entity; only trip updates are of interest."""
    id: Optional[str] = None
    trip_update: Optional[TripUpdate] = None


@dataclass(frozen=True)
class RawEvent:
    """Flattened feed data for one (trip, stop) pair."""
    stop_id: Optional[str] = None
    route_id: Optional[str] = None
    arrival_time: Optional[int] = None
    arrival_delay: Optional[int] = None
    departure_time: Optional[int] = None
    departure_delay: Optional[int] = None

    @classmethod
    def from_update(cls, route_id: Optional[str], update: StopTimeUpdate) -> "RawEvent":
        arrival_time = arrival_delay = departure_time = departure_delay = None
        if update.arrival is not None:
            arrival_time = update.arrival.time
            arrival_delay = update.arrival.delay
        if update.departure is not None:
            departure_time = update.departure.time
            departure_delay = update.departure.delay
        return cls(
            stop_id=update.stop_id,
            route_id=route_id,
            arrival_time=arrival_time,
            arrival_delay=arrival_delay,
            departure_time=departure_time,
            departure_delay=departure_delay,
        )

    def to_dict(self) -> dict:
        return {
            "stop_id": self.stop_id,
            "route_id": self.route_id,
            "arrival_time": self.arrival_time,
            "arrival_delay": self.arrival_delay,
            "departure_time": self.departure_time,
            "departure_delay": self.departure_delay,
        }


@dataclass(frozen=True)
class ResolvedArrival:
    """A normalized arrival at one directional platform."""
    stop_id: str
    route: str
    direction: Optional[str]  # "N", "S" or None when the stop id has no suffix
    arrival_epoch: Optional[int]
    minutes_until: Optional[int]
    status: str  # STATUS_SCHEDULED or STATUS_APPROACHING
    used_fallback_time: bool = False
    delay_seconds: Optional[int] = None

    @property
    def is_approaching(self) -> bool:
        return self.status == STATUS_APPROACHING

    def to_dict(self) -> dict:
        return {
            "stop_id": self.stop_id,
            "route": self.route,
            "direction": self.direction,
            "arrival_epoch": self.arrival_epoch,
            "minutes_until": self.minutes_until,
            "status": self.status,
            "used_fallback_time": self.used_fallback_time,
            "delay_seconds": self.delay_seconds,
        }


# {station_name: {route: [ResolvedArrival, ...]}}
StationView = Dict[str, Dict[str, List[ResolvedArrival]]]


@dataclass
class SourceOutcome:
    """Settled result of fetching one feed source."""
    source: str
    ok: bool
    entities: List[FeedEntity] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "ok": self.ok,
            "entities": len(self.entities),
            "error": self.error,
        }


@dataclass
class Diagnostics:
    """Per-run counters used to debug feed-format drift."""
    total_entities: int = 0
    total_trip_updates: int = 0
    total_stop_time_updates: int = 0
    matched_with_time: int = 0
    matched_no_time: int = 0
    used_fallback_time_count: int = 0
    sample_stop_ids: List[str] = field(default_factory=list)
    matched_no_time_ids: List[str] = field(default_factory=list)
    matched_no_time_details: List[dict] = field(default_factory=list)
    sources: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_entities": self.total_entities,
            "total_trip_updates": self.total_trip_updates,
            "total_stop_time_updates": self.total_stop_time_updates,
            "matched_with_time": self.matched_with_time,
            "matched_no_time": self.matched_no_time,
            "used_fallback_time_count": self.used_fallback_time_count,
            "sample_stop_ids": list(self.sample_stop_ids),
            "matched_no_time_ids": list(self.matched_no_time_ids),
            "matched_no_time_details": list(self.matched_no_time_details),
            "sources": list(self.sources),
        }


@dataclass(frozen=True)
class StopResolution:
    """Outcome of resolving a request's station names and stop ids."""
    stations: Tuple[str, ...]  # Display names (and bare stop ids) in input order
    unknown_stations: Tuple[str, ...]
    base_to_station: Dict[str, str]  # base stop id -> station key

    @property
    def base_stop_ids(self) -> List[str]:
        return list(self.base_to_station.keys())
