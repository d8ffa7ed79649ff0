"""GTFS-Realtime feed fetcher and decoder."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import requests
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .exceptions import FeedError
from .models import FeedEntity, SourceOutcome, StopTimeEvent, StopTimeUpdate, TripUpdate

logger = logging.getLogger(__name__)

API_BASE = "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/"

# MTA subway GTFS-Realtime feeds
MTA_FEEDS = (
    "nyct%2Fgtfs-ace",
    "nyct%2Fgtfs-bdfm",
    "nyct%2Fgtfs-g",
    "nyct%2Fgtfs-jz",
    "nyct%2Fgtfs-l",
    "nyct%2Fgtfs-nqrw",
    "nyct%2Fgtfs-7",
    "nyct%2Fgtfs",  # 1-6, S
    "nyct%2Fgtfs-si",
)

REQUEST_HEADERS = {
    "Accept": "application/x-protobuf",
    "User-Agent": "arrivalboard/0.1",
}


def _event(pb_event) -> StopTimeEvent:
    return StopTimeEvent(
        time=pb_event.time if pb_event.HasField("time") else None,
        delay=pb_event.delay if pb_event.HasField("delay") else None,
    )


def decode_feed(data: bytes, source: str = "feed") -> List[FeedEntity]:
    """
    Decode GTFS-Realtime protobuf bytes into FeedEntity objects.

    Only presence-checked fields are copied; absent fields stay None.

    Raises:
        FeedError: If the bytes are not a valid FeedMessage.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(data)
    except DecodeError as e:
        raise FeedError(source, f"undecodable payload: {e}") from e

    entities: List[FeedEntity] = []
    for entity in feed.entity:
        trip_update = None
        if entity.HasField("trip_update"):
            pb_trip_update = entity.trip_update
            route_id = None
            if pb_trip_update.HasField("trip") and pb_trip_update.trip.HasField("route_id"):
                route_id = pb_trip_update.trip.route_id

            updates = []
            for stu in pb_trip_update.stop_time_update:
                updates.append(
                    StopTimeUpdate(
                        stop_id=stu.stop_id if stu.HasField("stop_id") else None,
                        arrival=_event(stu.arrival) if stu.HasField("arrival") else None,
                        departure=_event(stu.departure) if stu.HasField("departure") else None,
                    )
                )
            trip_update = TripUpdate(route_id=route_id, stop_time_updates=updates)

        entities.append(FeedEntity(id=entity.id or None, trip_update=trip_update))

    logger.debug(f"Decoded {len(entities)} entities from {source}")
    return entities


class FeedClient:
    """Fetches GTFS-Realtime feeds, one settled outcome per source."""

    def __init__(
        self,
        sources: Sequence[str] = MTA_FEEDS,
        api_base: str = API_BASE,
        timeout: float = 10,
        max_workers: int = 4,
        api_key: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            sources: Feed paths relative to api_base, or absolute URLs.
            api_base: Prefix for relative feed paths.
            timeout: Per-request timeout in seconds.
            max_workers: Upper bound on concurrent fetches.
            api_key: Optional value for the x-api-key header.
        """
        self.sources = tuple(sources)
        self.api_base = api_base
        self.timeout = timeout
        self.max_workers = max(1, max_workers)
        self.headers = dict(REQUEST_HEADERS)
        if api_key:
            self.headers["x-api-key"] = api_key

    def feed_url(self, source: str) -> str:
        if source.startswith(("http://", "https://")):
            return source
        return f"{self.api_base}{source}"

    def fetch_feed(self, source: str) -> bytes:
        """
        Fetch raw protobuf bytes for one source.

        Raises:
            FeedError: On transport errors or non-2xx responses.
        """
        url = self.feed_url(source)
        logger.debug(f"Fetching {url}")
        try:
            response = requests.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FeedError(source, str(e)) from e
        return response.content

    def fetch_source(self, source: str) -> SourceOutcome:
        """Fetch and decode one source. Failures become a failed outcome."""
        try:
            entities = decode_feed(self.fetch_feed(source), source)
        except Exception as e:
            logger.warning(f"Failed to fetch feed {source}: {e}")
            return SourceOutcome(source=source, ok=False, error=str(e))
        return SourceOutcome(source=source, ok=True, entities=entities)

    def fetch_all(self, sources: Optional[Sequence[str]] = None) -> List[SourceOutcome]:
        """
        Fetch every source concurrently and wait for all of them.

        Returns:
            One SourceOutcome per source, in source order.
        """
        sources = tuple(sources) if sources is not None else self.sources
        if not sources:
            return []

        workers = min(self.max_workers, len(sources))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.fetch_source, source) for source in sources]
            outcomes = [future.result() for future in futures]

        failed = [o.source for o in outcomes if not o.ok]
        if failed:
            logger.warning(f"{len(failed)} of {len(outcomes)} feeds failed: {failed}")
        return outcomes
