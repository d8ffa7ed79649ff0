"""Tests for FeedClient."""

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests
from google.transit import gtfs_realtime_pb2

# Add src to path so we can import arrivalboard
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from arrivalboard.exceptions import FeedError
from arrivalboard.feed_client import FeedClient, decode_feed

NOW = 1_700_000_000


def create_feed_bytes() -> bytes:
    """Create a small GTFS-Realtime feed with a timed, a fallback and a timeless update."""
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"

    entity = feed.entity.add()
    entity.id = "1"
    trip_update = entity.trip_update
    trip_update.trip.trip_id = "001"
    trip_update.trip.route_id = "A"

    stop_time = trip_update.stop_time_update.add()
    stop_time.stop_id = "A40N"
    stop_time.arrival.time = NOW + 300

    stop_time = trip_update.stop_time_update.add()
    stop_time.stop_id = "231S"
    stop_time.arrival.delay = 1700000000

    stop_time = trip_update.stop_time_update.add()
    stop_time.stop_id = "G31N"
    stop_time.arrival.SetInParent()
    stop_time.departure.SetInParent()

    alert = feed.entity.add()
    alert.id = "2"
    alert.alert.SetInParent()

    return feed.SerializeToString()


def mock_response(content: bytes) -> MagicMock:
    response = MagicMock()
    response.content = content
    response.raise_for_status.return_value = None
    return response


class TestDecodeFeed(unittest.TestCase):
    """Test protobuf decoding into optional-field records."""

    def test_decode_feed(self):
        entities = decode_feed(create_feed_bytes())

        self.assertEqual(len(entities), 2)
        self.assertIsNone(entities[1].trip_update)

        trip_update = entities[0].trip_update
        self.assertEqual(trip_update.route_id, "A")
        timed, fallback, timeless = trip_update.stop_time_updates

        self.assertEqual(timed.stop_id, "A40N")
        self.assertEqual(timed.arrival.time, NOW + 300)
        self.assertIsNone(timed.arrival.delay)
        self.assertIsNone(timed.departure)

        self.assertIsNone(fallback.arrival.time)
        self.assertEqual(fallback.arrival.delay, 1700000000)

        self.assertIsNotNone(timeless.arrival)
        self.assertIsNone(timeless.arrival.time)
        self.assertIsNone(timeless.arrival.delay)
        self.assertIsNotNone(timeless.departure)

    def test_decode_garbage_raises_feed_error(self):
        with self.assertRaises(FeedError):
            decode_feed(b"\xff\xff\xff\xff", "nyct%2Fgtfs-g")


class TestFeedClient(unittest.TestCase):
    """Test fetching and settle-all fan-out."""

    def test_feed_url(self):
        client = FeedClient(api_base="http://test/")
        self.assertEqual(client.feed_url("nyct%2Fgtfs-ace"), "http://test/nyct%2Fgtfs-ace")
        self.assertEqual(client.feed_url("https://other/feed"), "https://other/feed")

    def test_api_key_header(self):
        client = FeedClient(api_key="secret")
        self.assertEqual(client.headers["x-api-key"], "secret")
        self.assertNotIn("x-api-key", FeedClient().headers)

    @patch("arrivalboard.feed_client.requests.get")
    def test_fetch_source_success(self, mock_get):
        mock_get.return_value = mock_response(create_feed_bytes())
        client = FeedClient(api_base="http://test/")

        outcome = client.fetch_source("nyct%2Fgtfs-ace")

        self.assertTrue(outcome.ok)
        self.assertEqual(len(outcome.entities), 2)
        mock_get.assert_called_once()
        self.assertEqual(mock_get.call_args[0][0], "http://test/nyct%2Fgtfs-ace")

    @patch("arrivalboard.feed_client.requests.get")
    def test_fetch_source_network_error(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("unreachable")
        outcome = FeedClient().fetch_source("nyct%2Fgtfs-l")

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.entities, [])
        self.assertIn("unreachable", outcome.error)

    @patch("arrivalboard.feed_client.requests.get")
    def test_fetch_all_absorbs_failures(self, mock_get):
        def fake_get(url, headers=None, timeout=None):
            if url.endswith("bad"):
                raise requests.Timeout("timed out")
            if url.endswith("garbage"):
                return mock_response(b"\xff\xff\xff\xff")
            return mock_response(create_feed_bytes())

        mock_get.side_effect = fake_get
        client = FeedClient(sources=["good", "bad", "garbage"], api_base="http://test/")

        outcomes = client.fetch_all()

        self.assertEqual([o.source for o in outcomes], ["good", "bad", "garbage"])
        self.assertEqual([o.ok for o in outcomes], [True, False, False])
        self.assertEqual(len(outcomes[0].entities), 2)

    def test_fetch_all_without_sources(self):
        self.assertEqual(FeedClient(sources=[]).fetch_all(), [])


if __name__ == "__main__":
    unittest.main()
