"""Example usage of ArrivalTracker."""

import json
import logging
import os
import sys
from pathlib import Path

# Add src to path so we can import arrivalboard
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from arrivalboard import ArrivalTracker, FeedClient, StationIndex

INDEX_PATH = Path(__file__).parent / "stops.name_to_id.json"

EXPECTED_ROUTES = {
    "Clark St": ["2", "3"],
    "High St": ["A", "C"],
}

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def build_tracker() -> ArrivalTracker:
    index = StationIndex.from_file(INDEX_PATH, expected_routes=EXPECTED_ROUTES)
    client = FeedClient(api_key=os.environ.get("MTA_API_KEY"))
    return ArrivalTracker(index, feed_client=client)


def print_arrivals(stations: str):
    """
    Fetch and display arrivals for one or more stations.

    Args:
        stations: Comma-separated station names (e.g., "Clark St,High St")
    """
    print(f"\n{'='*70}")
    print(f"Fetching arrivals for: {stations}")
    print(f"{'='*70}\n")

    tracker = build_tracker()
    status, body = tracker.handle({"station": stations, "max_per_route": "3"})
    if status != 200:
        print(f"Error ({status}): {body.get('error')}")
        sys.exit(1)

    meta = body["meta"]
    if meta["unknown_stations"]:
        print(f"Unknown stations: {', '.join(meta['unknown_stations'])}")
    if meta["sources_failed"]:
        print(f"Feeds unavailable: {', '.join(meta['sources_failed'])}")

    for station, routes in body["stations"].items():
        print(f"\n{station}:")
        if not routes:
            print("  No arrivals found")
        for route, arrivals in routes.items():
            for arrival in arrivals:
                minutes = arrival["minutes_until"]
                eta = "approaching" if minutes is None else f"{minutes:2d} min"
                flag = " (from delay field)" if arrival["used_fallback_time"] else ""
                print(f"  {route} {arrival['direction'] or '?'}: {eta}{flag}")

    _, speech_body = tracker.handle({"station": stations, "format": "speech", "speech_direction": "both"})
    print("\nSPEECH:")
    print(f"  {speech_body.get('speech')}")
    print("\n" + "=" * 70 + "\n")


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "--json":
        tracker = build_tracker()
        _, body = tracker.handle({"station": ",".join(sys.argv[2:]) or "Clark St", "show_debug": "1"})
        print(json.dumps(body, indent=2))
    else:
        print_arrivals(" ".join(sys.argv[1:]) or "Clark St,High St")
