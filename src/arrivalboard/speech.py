"""Short spoken summaries of aggregated arrivals."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .aggregator import arrival_sort_key
from .models import DIRECTION_NORTH, DIRECTION_SOUTH, ResolvedArrival, StationView

DEFAULT_SPEECH_LIMIT = 2
SPEECH_BOTH = "BOTH"

DIRECTION_WORDS = {
    DIRECTION_NORTH: "northbound",
    DIRECTION_SOUTH: "southbound",
}


def minutes_phrase(minutes: Optional[int]) -> str:
    if minutes is None:
        return "approaching"
    if minutes <= 0:
        return "now"
    if minutes == 1:
        return "1 minute"
    return f"{minutes} minutes"


def arrival_phrase(arrival: ResolvedArrival, include_route: bool = True) -> str:
    """Render e.g. "A in 5 minutes", "A in now" or "A in approaching"."""
    phrase = minutes_phrase(arrival.minutes_until)
    if not include_route:
        return phrase
    return f"{arrival.route} in {phrase}"


def parse_speech_direction(value: Optional[str]) -> str:
    code = (value or DIRECTION_NORTH).strip().upper()
    if code in DIRECTION_WORDS or code == SPEECH_BOTH:
        return code
    raise ValueError(f"Unsupported speech direction: {value}")


@dataclass(frozen=True)
class SpeechFormatter:
    """
    Builds one sentence per station from capped route lists.

    The speech limit applies per direction and is independent of the
    per-route cap used for the structured output.
    """
    limit: int = DEFAULT_SPEECH_LIMIT
    direction: str = DIRECTION_NORTH  # "N", "S" or "BOTH"
    collapse_repeated_routes: bool = False

    def __post_init__(self):
        object.__setattr__(self, "limit", max(1, int(self.limit)))
        object.__setattr__(self, "direction", parse_speech_direction(self.direction))

    def directions(self) -> Tuple[str, ...]:
        if self.direction == SPEECH_BOTH:
            return (DIRECTION_NORTH, DIRECTION_SOUTH)
        return (self.direction,)

    def top_arrivals(self, routes: Dict[str, List[ResolvedArrival]], direction: str) -> List[ResolvedArrival]:
        """Flatten all routes for one direction, re-sort and take the head."""
        arrivals = [a for route_list in routes.values() for a in route_list if a.direction == direction]
        arrivals.sort(key=arrival_sort_key)
        return arrivals[: self.limit]

    def clause(self, arrivals: Sequence[ResolvedArrival], direction: str) -> str:
        label = f"({DIRECTION_WORDS[direction]})"
        if not arrivals:
            return f"{label} none"
        items = []
        previous_route = None
        for arrival in arrivals:
            repeat = self.collapse_repeated_routes and arrival.route == previous_route
            items.append(arrival_phrase(arrival, include_route=not repeat))
            previous_route = arrival.route
        return f"{label} {'; '.join(items)}"

    def station_sentence(self, station: str, routes: Dict[str, List[ResolvedArrival]]) -> str:
        clauses = [self.clause(self.top_arrivals(routes, d), d) for d in self.directions()]
        return f"{station}: {'. '.join(clauses)}."

    def format(self, view: StationView, order: Sequence[str] = ()) -> Tuple[str, Dict[str, str]]:
        """
        Render every station.

        Args:
            view: Aggregated station view.
            order: Station input order; defaults to the view's own order.

        Returns:
            (combined speech string, {station: sentence})
        """
        sentences = {station: self.station_sentence(station, routes) for station, routes in view.items()}
        ordered = list(order) if order else list(view.keys())
        speech = " ".join(sentences[name] for name in ordered if name in sentences)
        return speech, sentences
