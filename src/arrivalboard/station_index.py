"""Station name to base stop id index."""

import json
import logging
import re
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .exceptions import StationNotFoundError, StationResolutionError
from .models import DIRECTIONS, StopResolution

logger = logging.getLogger(__name__)

_STREET_RE = re.compile(r"\bstreet\b")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_station_name(name: str) -> str:
    """Lowercase, collapse whitespace and fold "Street" into "St"."""
    value = (name or "").lower()
    value = _STREET_RE.sub("st", value)
    return _WHITESPACE_RE.sub(" ", value).strip()


def direction_from_stop_id(stop_id: Optional[str]) -> Optional[str]:
    """Return "N"/"S" from the stop id suffix, or None."""
    if stop_id and len(stop_id) > 1 and stop_id[-1] in DIRECTIONS:
        return stop_id[-1]
    return None


def base_stop_id(stop_id: str) -> str:
    """Strip the direction suffix from a stop id."""
    if direction_from_stop_id(stop_id) is not None:
        return stop_id[:-1]
    return stop_id


class StationIndex:
    """
    Read-only lookup from station name to the base stop ids of that station.

    The index is precomputed elsewhere (one JSON object of
    ``{"Display Name": ["baseId", ...]}``) and loaded once per process.
    Names are matched case-insensitively with whitespace collapsed and
    "Street" treated as "St".
    """

    def __init__(
        self,
        name_to_ids: Mapping[str, Iterable[str]],
        expected_routes: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        """
        Build the index.

        Args:
            name_to_ids: Display name -> stop ids. Directional ids are reduced to their base.
            expected_routes: Optional display name -> routes normally serving the station.
        """
        self._stations: Dict[str, Tuple[str, FrozenSet[str]]] = {}  # key -> (display, base ids)
        self._expected_routes: Dict[str, Tuple[str, ...]] = {}

        for name, stop_ids in name_to_ids.items():
            key = normalize_station_name(name)
            if not key:
                continue
            bases = {base_stop_id(s.strip()) for s in stop_ids if s and s.strip()}
            if key in self._stations:
                display, existing = self._stations[key]
                self._stations[key] = (display, existing | frozenset(bases))
            else:
                self._stations[key] = (name.strip(), frozenset(bases))

        for name, routes in (expected_routes or {}).items():
            key = normalize_station_name(name)
            if key not in self._expected_routes:
                self._expected_routes[key] = tuple(routes)

        logger.debug(f"Indexed {len(self._stations)} stations")

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        expected_routes: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> "StationIndex":
        """Load the precomputed name-to-ids JSON file."""
        logger.info(f"Loading station index from {path}")
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Station index {path} must be a JSON object")
        return cls(data, expected_routes=expected_routes)

    def __len__(self) -> int:
        return len(self._stations)

    def __contains__(self, name: str) -> bool:
        return normalize_station_name(name) in self._stations

    def lookup(self, name: str) -> Optional[FrozenSet[str]]:
        """Return the base stop ids for a station name, or None if unknown."""
        entry = self._stations.get(normalize_station_name(name))
        return entry[1] if entry else None

    def resolve(self, name: str) -> Set[str]:
        """
        Resolve a station name to its base stop ids.

        Raises:
            StationNotFoundError: If the name is not in the index.
        """
        ids = self.lookup(name)
        if not ids:
            raise StationNotFoundError(name)
        return set(ids)

    def display_name(self, name: str) -> Optional[str]:
        entry = self._stations.get(normalize_station_name(name))
        return entry[0] if entry else None

    def expected_routes(self, name: str) -> List[str]:
        return list(self._expected_routes.get(normalize_station_name(name), ()))

    def find_stations_by_name(self, fragment: str) -> List[str]:
        """Find display names containing a fragment (partial match)."""
        needle = normalize_station_name(fragment)
        return [display for key, (display, _) in self._stations.items() if needle and needle in key]

    def suggest(self, names: Sequence[str]) -> Dict[str, List[str]]:
        """Known stations that partially match each unknown name, when any do."""
        suggestions = {}
        for name in names:
            matches = self.find_stations_by_name(name)
            if matches:
                suggestions[name] = matches
        return suggestions

    def resolve_request(self, names: Sequence[str], stop_ids: Sequence[str] = ()) -> StopResolution:
        """
        Resolve a request's station names and raw stop ids together.

        Unknown names are collected rather than raised. Raw stop ids bypass
        name resolution; a base id already claimed by a named station stays
        with that station, otherwise the base id is its own station key.

        Raises:
            StationResolutionError: If nothing resolved to a base stop id.
        """
        stations: List[str] = []
        unknown: List[str] = []
        base_to_station: Dict[str, str] = {}

        for raw_name in names:
            name = raw_name.strip()
            if not name:
                continue
            ids = self.lookup(name)
            if not ids:
                unknown.append(name)
                continue
            display = self.display_name(name)
            if display not in stations:
                stations.append(display)
            for base in sorted(ids):
                base_to_station.setdefault(base, display)

        for raw_id in stop_ids:
            stop_id = raw_id.strip()
            if not stop_id:
                continue
            base = base_stop_id(stop_id)
            if base in base_to_station:
                continue
            base_to_station[base] = base
            stations.append(base)

        if unknown:
            logger.info(f"Unknown stations: {unknown}")
        if not base_to_station:
            raise StationResolutionError(unknown)

        return StopResolution(
            stations=tuple(stations),
            unknown_stations=tuple(unknown),
            base_to_station=base_to_station,
        )
