"""Grouping, filtering and trimming of resolved arrivals."""

import logging
from datetime import datetime, timezone
from typing import FrozenSet, Iterable, List, Mapping, Optional, Sequence

from .models import (
    DIRECTIONS,
    Diagnostics,
    FeedEntity,
    RawEvent,
    ResolvedArrival,
    StationView,
    TripUpdate,
)
from .station_index import base_stop_id
from .time_resolver import DEFAULT_POLICY, TimePolicy, looks_like_epoch, resolve_arrival

logger = logging.getLogger(__name__)

DEFAULT_MAX_PER_ROUTE = 5
MIN_MAX_PER_ROUTE = 1
MAX_MAX_PER_ROUTE = 10
SAMPLE_STOP_ID_LIMIT = 50

MATCH_PREFIX = "prefix"
MATCH_EXACT = "exact"


def clamp_max_per_route(value: Optional[int]) -> int:
    if value is None:
        return DEFAULT_MAX_PER_ROUTE
    return max(MIN_MAX_PER_ROUTE, min(MAX_MAX_PER_ROUTE, int(value)))


def parse_direction_filter(value: Optional[str]) -> Optional[FrozenSet[str]]:
    """
    Turn "N", "S", "both" (or None) into the set of directions to keep.

    None means no filtering.
    """
    if value is None:
        return None
    code = value.strip().upper()
    if code in DIRECTIONS:
        return frozenset({code})
    if code in ("", "BOTH", "NS", "SN"):
        return None
    raise ValueError(f"Unsupported direction: {value}")


def arrival_sort_key(arrival: ResolvedArrival):
    """Ascending epoch with approaching (no time) entries last."""
    if arrival.arrival_epoch is None:
        return (1, 0)
    return (0, arrival.arrival_epoch)


def _as_iso(seconds: Optional[int]) -> Optional[str]:
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(int(seconds), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    except (OverflowError, OSError, ValueError):
        return None


class ArrivalAggregator:
    """
    Collects arrivals for the requested stations during one aggregation run.

    Records are matched to stations through a dict keyed by base stop id, so
    the cost per record does not grow with the number of requested stops.
    """

    def __init__(
        self,
        base_to_station: Mapping[str, str],
        now: int,
        max_per_route: int = DEFAULT_MAX_PER_ROUTE,
        window_seconds: int = 0,
        routes: Optional[Iterable[str]] = None,
        direction: Optional[str] = None,
        policy: TimePolicy = DEFAULT_POLICY,
        match_mode: str = MATCH_PREFIX,
        stations: Sequence[str] = (),
        expected_routes: Optional[Mapping[str, Iterable[str]]] = None,
        count_approaching_in_cap: bool = True,
        collect_details: bool = False,
        raw_dump: bool = False,
    ):
        """
        Args:
            base_to_station: Requested base stop id -> station key.
            now: Current Unix time for the whole run.
            max_per_route: Per-route cap, clamped to [1, 10].
            window_seconds: Lookback for timed arrivals; 0 keeps only future ones.
            routes: Optional route allow-list.
            direction: Optional "N", "S" or "both".
            policy: Time resolution switches.
            match_mode: "prefix" or "exact" matching of stop ids to base ids.
            stations: Station keys in request order; each appears in the result.
            expected_routes: Station key -> routes to seed as empty lists.
            count_approaching_in_cap: Whether approaching entries use up the cap.
            collect_details: Record per-record detail for approaching entries.
            raw_dump: Include raw event fields in those details.
        """
        if match_mode not in (MATCH_PREFIX, MATCH_EXACT):
            raise ValueError(f"Unsupported match mode: {match_mode}")

        self.base_to_station = dict(base_to_station)
        self.now = int(now)
        self.max_per_route = clamp_max_per_route(max_per_route)
        self.window_seconds = max(0, int(window_seconds or 0))
        self.routes = frozenset(routes) if routes else None
        self.directions = parse_direction_filter(direction)
        self.policy = policy
        self.match_mode = match_mode
        self.count_approaching_in_cap = count_approaching_in_cap
        self.collect_details = collect_details
        self.raw_dump = raw_dump
        self.diagnostics = Diagnostics()

        self._stations: List[str] = list(stations)
        for station in self.base_to_station.values():
            if station not in self._stations:
                self._stations.append(station)

        self._groups: StationView = {station: {} for station in self._stations}
        for station, route_ids in (expected_routes or {}).items():
            if station in self._groups:
                for route in route_ids:
                    self._groups[station].setdefault(route, [])

        self._samples = set()
        self._no_time_ids = set()
        self._longest_base = max((len(b) for b in self.base_to_station), default=0)

    def match_station(self, stop_id: Optional[str]) -> Optional[str]:
        """Return the station key a raw stop id belongs to, or None."""
        if not stop_id:
            return None
        base = base_stop_id(stop_id)
        station = self.base_to_station.get(base)
        if station is not None or self.match_mode == MATCH_EXACT:
            return station
        # Longest requested base id that prefixes the raw base.
        for length in range(min(len(base), self._longest_base), 0, -1):
            station = self.base_to_station.get(base[:length])
            if station is not None:
                return station
        return None

    def ingest(self, entities: Iterable[FeedEntity]) -> None:
        """Feed one source's decoded entities into the run."""
        for entity in entities:
            self.diagnostics.total_entities += 1
            if entity.trip_update is None:
                continue
            self.add_trip_update(entity.trip_update)

    def add_trip_update(self, trip_update: TripUpdate) -> None:
        self.diagnostics.total_trip_updates += 1
        for update in trip_update.stop_time_updates:
            self.diagnostics.total_stop_time_updates += 1
            self.add_event(RawEvent.from_update(trip_update.route_id, update))

    def add_event(self, event: RawEvent) -> Optional[ResolvedArrival]:
        """
        Resolve and place one event.

        Returns:
            The ResolvedArrival if it was kept, otherwise None.
        """
        stop_id = event.stop_id
        if not stop_id:
            return None
        self._sample(stop_id)

        if self.routes is not None and (event.route_id or "") not in self.routes:
            return None

        station = self.match_station(stop_id)
        if station is None:
            return None

        arrival = resolve_arrival(event, self.now, self.policy)

        if self.directions is not None and arrival.direction not in self.directions:
            return None

        if arrival.used_fallback_time:
            self.diagnostics.used_fallback_time_count += 1

        if arrival.is_approaching:
            self._record_no_time(event, arrival)
        else:
            if arrival.arrival_epoch < self.now - self.window_seconds:
                return None
            self.diagnostics.matched_with_time += 1

        self._groups[station].setdefault(arrival.route, []).append(arrival)
        return arrival

    def build(self) -> StationView:
        """Sort and trim every (station, route) list."""
        view: StationView = {}
        for station in self._stations:
            routes = self._groups.get(station, {})
            view[station] = {route: self._trim(arrivals) for route, arrivals in routes.items()}
        return view

    def _trim(self, arrivals: List[ResolvedArrival]) -> List[ResolvedArrival]:
        ordered = sorted(arrivals, key=arrival_sort_key)
        if self.count_approaching_in_cap:
            return ordered[: self.max_per_route]
        timed = [a for a in ordered if not a.is_approaching]
        approaching = [a for a in ordered if a.is_approaching]
        return timed[: self.max_per_route] + approaching

    def _sample(self, stop_id: str) -> None:
        if stop_id in self._samples or len(self._samples) >= SAMPLE_STOP_ID_LIMIT:
            return
        self._samples.add(stop_id)
        self.diagnostics.sample_stop_ids.append(stop_id)

    def _record_no_time(self, event: RawEvent, arrival: ResolvedArrival) -> None:
        self.diagnostics.matched_no_time += 1
        if arrival.stop_id not in self._no_time_ids:
            self._no_time_ids.add(arrival.stop_id)
            self.diagnostics.matched_no_time_ids.append(arrival.stop_id)

        if not self.collect_details:
            return

        threshold = self.policy.epoch_threshold
        arrival_epoch_like = looks_like_epoch(event.arrival_delay, threshold)
        departure_epoch_like = looks_like_epoch(event.departure_delay, threshold)
        detail = {
            "stop_id": arrival.stop_id,
            "route": arrival.route,
            "interpret": {
                "arrival_time_epoch": event.arrival_time,
                "arrival_time_iso": _as_iso(event.arrival_time),
                "arrival_delay_seconds": event.arrival_delay,
                "arrival_delay_looks_like_epoch": arrival_epoch_like,
                "arrival_delay_as_time_iso_if_epoch": _as_iso(event.arrival_delay) if arrival_epoch_like else None,
                "departure_time_epoch": event.departure_time,
                "departure_time_iso": _as_iso(event.departure_time),
                "departure_delay_seconds": event.departure_delay,
                "departure_delay_looks_like_epoch": departure_epoch_like,
                "departure_delay_as_time_iso_if_epoch": _as_iso(event.departure_delay) if departure_epoch_like else None,
            },
        }
        if self.raw_dump:
            detail["raw"] = event.to_dict()
        self.diagnostics.matched_no_time_details.append(detail)
