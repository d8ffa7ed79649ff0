"""Main ArrivalTracker class."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .aggregator import (
    DEFAULT_MAX_PER_ROUTE,
    MATCH_PREFIX,
    ArrivalAggregator,
    clamp_max_per_route,
    parse_direction_filter,
)
from .exceptions import StationResolutionError
from .feed_client import FeedClient
from .models import SourceOutcome, StationView
from .speech import DEFAULT_SPEECH_LIMIT, SpeechFormatter, parse_speech_direction
from .station_index import StationIndex
from .time_resolver import DEFAULT_POLICY, TimePolicy

logger = logging.getLogger(__name__)


def split_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _int_param(value: Optional[str], fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


@dataclass(frozen=True)
class ArrivalQuery:
    """Parameters of one arrivals request."""
    stations: Tuple[str, ...] = ()
    stop_ids: Tuple[str, ...] = ()
    max_per_route: int = DEFAULT_MAX_PER_ROUTE
    window_seconds: int = 0
    routes: Optional[Tuple[str, ...]] = None
    direction: Optional[str] = None  # "N", "S" or None for both
    show_debug: bool = False
    raw_dump: bool = False
    speech: bool = False
    speech_limit: int = DEFAULT_SPEECH_LIMIT
    speech_direction: str = "N"

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "ArrivalQuery":
        """
        Build a query from query-string style parameters.

        Unparseable numbers fall back to their defaults; an invalid direction
        raises ValueError.
        """
        direction_filter = parse_direction_filter(params.get("direction"))
        return cls(
            stations=split_csv(params.get("station")),
            stop_ids=split_csv(params.get("stop_ids")),
            max_per_route=clamp_max_per_route(_int_param(params.get("max_per_route"), DEFAULT_MAX_PER_ROUTE)),
            window_seconds=max(0, _int_param(params.get("window_seconds"), 0)),
            routes=split_csv(params.get("routes")) or None,
            direction=next(iter(direction_filter)) if direction_filter else None,
            show_debug=params.get("show_debug") == "1",
            raw_dump=params.get("raw_dump") == "1",
            speech=params.get("format") == "speech",
            speech_limit=max(1, _int_param(params.get("speech_limit"), DEFAULT_SPEECH_LIMIT)),
            speech_direction=parse_speech_direction(params.get("speech_direction")),
        )


class ArrivalTracker:
    """
    Turns arrival requests into response payloads.

    This class:
    - Resolves station names and stop ids against the station index
    - Pulls every feed source, absorbing per-source failures
    - Aggregates, trims and optionally speaks the arrivals
    """

    def __init__(
        self,
        station_index: StationIndex,
        feed_client: Optional[FeedClient] = None,
        policy: TimePolicy = DEFAULT_POLICY,
        match_mode: str = MATCH_PREFIX,
        count_approaching_in_cap: bool = True,
        collapse_repeated_routes: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the tracker.

        Args:
            station_index: Station lookup table, loaded once per process.
            feed_client: Feed fetcher. Defaults to all MTA subway feeds.
            policy: Time resolution switches applied to every response.
            match_mode: "prefix" or "exact" stop id matching.
            count_approaching_in_cap: Whether approaching entries count toward max_per_route.
            collapse_repeated_routes: Drop repeated route names in speech.
            clock: Source of the current Unix time.
        """
        self.station_index = station_index
        self.feed_client = feed_client or FeedClient()
        self.policy = policy
        self.match_mode = match_mode
        self.count_approaching_in_cap = count_approaching_in_cap
        self.collapse_repeated_routes = collapse_repeated_routes
        self.clock = clock

    def get_arrivals(self, query: ArrivalQuery, outcomes: Optional[Sequence[SourceOutcome]] = None) -> dict:
        """
        Build the response payload for a query.

        Args:
            query: Request parameters.
            outcomes: Already fetched source outcomes. Fetched from the feed client if None.

        Returns:
            {"meta", "stations"} or, in speech mode, {"meta", "speech", "stations_speech"},
            plus "debug" when requested.

        Raises:
            StationResolutionError: If no stop ids could be resolved.
        """
        resolution = self.station_index.resolve_request(query.stations, query.stop_ids)
        named = [s for s in resolution.stations if s in self.station_index]
        expected = {name: self.station_index.expected_routes(name) for name in named}

        if outcomes is None:
            outcomes = self.feed_client.fetch_all()
        now = int(self.clock())

        aggregator = ArrivalAggregator(
            resolution.base_to_station,
            now=now,
            max_per_route=query.max_per_route,
            window_seconds=query.window_seconds,
            routes=query.routes,
            direction=query.direction,
            policy=self.policy,
            match_mode=self.match_mode,
            stations=resolution.stations,
            expected_routes=expected,
            count_approaching_in_cap=self.count_approaching_in_cap,
            collect_details=query.show_debug,
            raw_dump=query.raw_dump,
        )
        for outcome in outcomes:
            if outcome.ok:
                aggregator.ingest(outcome.entities)
            aggregator.diagnostics.sources.append(outcome.to_dict())

        view = aggregator.build()
        logger.debug(
            f"Aggregated {aggregator.diagnostics.total_stop_time_updates} stop time updates "
            f"into {len(view)} stations"
        )

        meta = {
            "stations": list(named) or None,
            "unknown_stations": list(resolution.unknown_stations) or None,
            "stop_ids": resolution.base_stop_ids,
            "generated_at": now,
            "max_per_route": aggregator.max_per_route,
            "window_seconds": aggregator.window_seconds,
            "routes": list(query.routes) if query.routes else None,
            "direction": query.direction,
            "expected_routes": {name: expected[name] or None for name in named},
            "sources_ok": sum(1 for o in outcomes if o.ok),
            "sources_failed": [o.source for o in outcomes if not o.ok],
        }

        if query.speech:
            formatter = SpeechFormatter(
                limit=query.speech_limit,
                direction=query.speech_direction,
                collapse_repeated_routes=self.collapse_repeated_routes,
            )
            speech, sentences = formatter.format(view, resolution.stations)
            payload = {"meta": meta, "speech": speech, "stations_speech": sentences}
        else:
            payload = {"meta": meta, "stations": self.serialize_view(view)}

        if query.show_debug:
            payload["debug"] = aggregator.diagnostics.to_dict()
        return payload

    def handle(self, params: Mapping[str, str]) -> Tuple[int, dict]:
        """
        Answer a query-string style request.

        Returns:
            (status code, body): 200 with the payload, 400 for unresolvable or
            invalid input, 500 for anything unexpected.
        """
        try:
            query = ArrivalQuery.from_params(params)
        except ValueError as e:
            return 400, {"error": str(e)}

        try:
            return 200, self.get_arrivals(query)
        except StationResolutionError as e:
            return 400, {
                "error": str(e),
                "unknown_stations": e.unknown_stations or None,
                "suggestions": self.station_index.suggest(e.unknown_stations) or None,
            }
        except Exception as e:
            logger.error(f"Failed to build arrivals: {e}", exc_info=True)
            return 500, {"error": "server error"}

    @staticmethod
    def serialize_view(view: StationView) -> Dict[str, Dict[str, List[dict]]]:
        return {
            station: {route: [a.to_dict() for a in arrivals] for route, arrivals in routes.items()}
            for station, routes in view.items()
        }
