"""Tests for ArrivalTracker."""

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

# Add src to path so we can import arrivalboard
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from arrivalboard.arrival_tracker import ArrivalQuery, ArrivalTracker
from arrivalboard.exceptions import StationResolutionError
from arrivalboard.feed_client import FeedClient
from arrivalboard.models import FeedEntity, SourceOutcome, StopTimeEvent, StopTimeUpdate, TripUpdate
from arrivalboard.station_index import StationIndex

NOW = 1_699_999_000

INDEX = {
    "Clark St": ["231"],
    "High St": ["A40"],
    "Flushing Av": ["G31"],
}


def make_entity(route, stop_id, arrival=None, departure=None):
    update = StopTimeUpdate(stop_id=stop_id, arrival=arrival, departure=departure)
    return FeedEntity(id="1", trip_update=TripUpdate(route_id=route, stop_time_updates=[update]))


class TestArrivalQuery(unittest.TestCase):
    """Test query-string parsing."""

    def test_defaults(self):
        query = ArrivalQuery.from_params({"station": "Clark St"})
        self.assertEqual(query.stations, ("Clark St",))
        self.assertEqual(query.stop_ids, ())
        self.assertEqual(query.max_per_route, 5)
        self.assertEqual(query.window_seconds, 0)
        self.assertIsNone(query.routes)
        self.assertIsNone(query.direction)
        self.assertFalse(query.speech)
        self.assertEqual(query.speech_limit, 2)
        self.assertEqual(query.speech_direction, "N")

    def test_parsing_and_clamping(self):
        query = ArrivalQuery.from_params({
            "station": " Clark St , High St ,",
            "stop_ids": "A40N,231S",
            "max_per_route": "99",
            "window_seconds": "-5",
            "routes": "2,3",
            "direction": "s",
            "show_debug": "1",
            "format": "speech",
            "speech_limit": "0",
            "speech_direction": "both",
        })
        self.assertEqual(query.stations, ("Clark St", "High St"))
        self.assertEqual(query.stop_ids, ("A40N", "231S"))
        self.assertEqual(query.max_per_route, 10)
        self.assertEqual(query.window_seconds, 0)
        self.assertEqual(query.routes, ("2", "3"))
        self.assertEqual(query.direction, "S")
        self.assertTrue(query.show_debug)
        self.assertTrue(query.speech)
        self.assertEqual(query.speech_limit, 1)
        self.assertEqual(query.speech_direction, "BOTH")

    def test_unparseable_numbers_use_defaults(self):
        query = ArrivalQuery.from_params({"max_per_route": "lots", "window_seconds": "x"})
        self.assertEqual(query.max_per_route, 5)
        self.assertEqual(query.window_seconds, 0)


class TestArrivalTracker(unittest.TestCase):
    """Test the request-to-payload flow with a mocked feed client."""

    def setUp(self):
        self.feed_client = MagicMock(spec=FeedClient)
        self.tracker = ArrivalTracker(
            StationIndex(INDEX, expected_routes={"Clark St": ["2", "3"]}),
            feed_client=self.feed_client,
            clock=lambda: NOW,
        )

    def set_entities(self, *entities):
        self.feed_client.fetch_all.return_value = [
            SourceOutcome(source="nyct%2Fgtfs-ace", ok=True, entities=list(entities)),
        ]

    def test_scheduled_arrival_end_to_end(self):
        self.set_entities(make_entity("A", "A40N", arrival=StopTimeEvent(time=NOW + 300)))

        status, body = self.tracker.handle({"station": "High St", "max_per_route": "5", "window_seconds": "0"})

        self.assertEqual(status, 200)
        self.assertEqual(
            body["stations"]["High St"]["A"],
            [{
                "stop_id": "A40N",
                "route": "A",
                "direction": "N",
                "arrival_epoch": NOW + 300,
                "minutes_until": 5,
                "status": "scheduled",
                "used_fallback_time": False,
                "delay_seconds": None,
            }],
        )
        self.assertEqual(body["meta"]["stations"], ["High St"])
        self.assertEqual(body["meta"]["stop_ids"], ["A40"])
        self.assertEqual(body["meta"]["generated_at"], NOW)
        self.assertNotIn("debug", body)

    def test_delay_as_epoch_end_to_end(self):
        self.set_entities(make_entity("2", "231S", arrival=StopTimeEvent(delay=1700000000)))

        status, body = self.tracker.handle({"station": "Clark St"})

        self.assertEqual(status, 200)
        entries = body["stations"]["Clark St"]["2"]
        self.assertEqual(len(entries), 1)
        self.assertTrue(entries[0]["used_fallback_time"])
        self.assertEqual(entries[0]["arrival_epoch"], 1700000000)
        self.assertEqual(body["stations"]["Clark St"]["3"], [])
        self.assertEqual(body["meta"]["expected_routes"], {"Clark St": ["2", "3"]})

    def test_no_time_end_to_end(self):
        self.set_entities(make_entity("G", "G31N", arrival=StopTimeEvent(), departure=StopTimeEvent(delay=12)))

        status, body = self.tracker.handle({"station": "Flushing Av", "window_seconds": "0"})

        self.assertEqual(status, 200)
        entry = body["stations"]["Flushing Av"]["G"][0]
        self.assertEqual(entry["status"], "approaching")
        self.assertIsNone(entry["arrival_epoch"])
        self.assertIsNone(entry["minutes_until"])
        self.assertEqual(entry["delay_seconds"], 12)

    def test_partial_station_resolution(self):
        self.set_entities()

        status, body = self.tracker.handle({"station": "Clark St,Bogus Station"})

        self.assertEqual(status, 200)
        self.assertIn("Clark St", body["stations"])
        self.assertEqual(body["meta"]["unknown_stations"], ["Bogus Station"])

    def test_raw_stop_ids(self):
        self.set_entities(make_entity("L", "L08N", arrival=StopTimeEvent(time=NOW + 60)))

        status, body = self.tracker.handle({"stop_ids": "L08N"})

        self.assertEqual(status, 200)
        self.assertEqual(body["stations"]["L08"]["L"][0]["minutes_until"], 1)
        self.assertIsNone(body["meta"]["stations"])

    def test_resolution_failure_is_client_error(self):
        status, body = self.tracker.handle({"station": "Bogus Station"})

        self.assertEqual(status, 400)
        self.assertEqual(body["unknown_stations"], ["Bogus Station"])
        self.assertIsNone(body["suggestions"])
        self.feed_client.fetch_all.assert_not_called()

        with self.assertRaises(StationResolutionError):
            self.tracker.get_arrivals(ArrivalQuery())

    def test_resolution_failure_suggests_partial_matches(self):
        status, body = self.tracker.handle({"station": "Clark"})

        self.assertEqual(status, 400)
        self.assertEqual(body["unknown_stations"], ["Clark"])
        self.assertEqual(body["suggestions"], {"Clark": ["Clark St"]})

    def test_invalid_direction_is_client_error(self):
        status, _ = self.tracker.handle({"station": "Clark St", "direction": "east"})
        self.assertEqual(status, 400)

    def test_unexpected_failure_is_server_error(self):
        self.feed_client.fetch_all.side_effect = RuntimeError("boom")

        status, body = self.tracker.handle({"station": "Clark St"})

        self.assertEqual(status, 500)
        self.assertEqual(body, {"error": "server error"})

    def test_misconfigured_tracker_is_server_error(self):
        self.set_entities()
        tracker = ArrivalTracker(
            StationIndex(INDEX),
            feed_client=self.feed_client,
            match_mode="fuzzy",
            clock=lambda: NOW,
        )

        status, body = tracker.handle({"station": "Clark St"})

        self.assertEqual(status, 500)
        self.assertEqual(body, {"error": "server error"})

    def test_failed_source_does_not_abort_run(self):
        self.feed_client.fetch_all.return_value = [
            SourceOutcome(source="nyct%2Fgtfs", ok=False, error="timed out"),
            SourceOutcome(
                source="nyct%2Fgtfs-ace",
                ok=True,
                entities=[make_entity("A", "A40S", arrival=StopTimeEvent(time=NOW + 120))],
            ),
        ]

        status, body = self.tracker.handle({"station": "High St"})

        self.assertEqual(status, 200)
        self.assertEqual(len(body["stations"]["High St"]["A"]), 1)
        self.assertEqual(body["meta"]["sources_ok"], 1)
        self.assertEqual(body["meta"]["sources_failed"], ["nyct%2Fgtfs"])

    def test_speech_mode(self):
        self.set_entities(
            make_entity("2", "231N", arrival=StopTimeEvent(time=NOW + 60)),
            make_entity("3", "231N", arrival=StopTimeEvent(time=NOW + 30)),
            make_entity("3", "231N", arrival=StopTimeEvent(time=NOW + 600)),
        )

        status, body = self.tracker.handle({
            "station": "High St,Clark St",
            "format": "speech",
            "speech_direction": "both",
        })

        self.assertEqual(status, 200)
        self.assertNotIn("stations", body)
        self.assertEqual(
            body["stations_speech"]["Clark St"],
            "Clark St: (northbound) 3 in now; 2 in 1 minute. (southbound) none.",
        )
        self.assertEqual(
            body["speech"],
            "High St: (northbound) none. (southbound) none. "
            "Clark St: (northbound) 3 in now; 2 in 1 minute. (southbound) none.",
        )

    def test_debug_block(self):
        self.set_entities(
            make_entity("2", "231N", arrival=StopTimeEvent(time=NOW + 60)),
            make_entity("3", "231S"),
            FeedEntity(id="alert"),
        )

        status, body = self.tracker.handle({"station": "Clark St", "show_debug": "1"})

        self.assertEqual(status, 200)
        debug = body["debug"]
        self.assertEqual(debug["total_entities"], 3)
        self.assertEqual(debug["total_trip_updates"], 2)
        self.assertEqual(debug["matched_with_time"], 1)
        self.assertEqual(debug["matched_no_time"], 1)
        self.assertEqual(debug["matched_no_time_ids"], ["231S"])
        self.assertEqual(len(debug["matched_no_time_details"]), 1)
        self.assertEqual(debug["sources"][0]["entities"], 3)

    def test_outcomes_can_be_supplied(self):
        outcomes = [SourceOutcome(
            source="local",
            ok=True,
            entities=[make_entity("2", "231N", arrival=StopTimeEvent(time=NOW + 120))],
        )]

        payload = self.tracker.get_arrivals(ArrivalQuery(stations=("Clark St",)), outcomes=outcomes)

        self.feed_client.fetch_all.assert_not_called()
        self.assertEqual(payload["stations"]["Clark St"]["2"][0]["minutes_until"], 2)


if __name__ == "__main__":
    unittest.main()
