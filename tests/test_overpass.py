from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy import func, select

from hazard_ingest.db.models import OsmWay
from hazard_ingest.db.upsert import StoreError
from hazard_ingest.providers.exceptions import ResponseParseError, ServerError
from hazard_ingest.providers.overpass import ROAD_CLASSES, build_road_query, fetch_road_ways
from hazard_ingest.records import WayRecord
from hazard_ingest.service.roads import fetch_and_store_roads
from tests._helpers import (
    OVERPASS_URL,
    TEST_BBOX,
    FakeHttpSession,
    make_response,
    make_settings,
    sequence_handler,
    sqlite_session,
)


OVERPASS_PAYLOAD = {
    "elements": [
        {
            "type": "way",
            "id": 101,
            "geometry": [{"lat": 13.04, "lon": 80.23}, {"lat": 13.041, "lon": 80.231}],
            "tags": {"highway": "primary", "name": "Usman Road"},
        },
        {
            "type": "way",
            "id": 102,
            "geometry": [{"lat": 13.05, "lon": 80.24}],
            "tags": {"highway": "service"},
        },
        {
            "type": "way",
            "id": 103,
            "geometry": [
                {"lat": 13.06, "lon": 80.25},
                {"lat": 13.061, "lon": 80.251},
                {"lat": 13.062, "lon": 80.252},
            ],
        },
        {"type": "node", "id": 9, "lat": 13.05, "lon": 80.24},
    ]
}


def _ways(count: int) -> list[WayRecord]:
    return [
        WayRecord(
            way_id=1000 + index,
            vertices=((13.04, 80.23), (13.041, 80.231 + index / 1000)),
            highway="residential",
            tags={"highway": "residential"},
        )
        for index in range(count)
    ]


class BuildRoadQueryTests(unittest.TestCase):
    def test_query_restricts_to_bbox_and_whitelist(self) -> None:
        query = build_road_query(TEST_BBOX)

        self.assertIn("[out:json]", query)
        self.assertIn("(13.035,80.225,13.065,80.255)", query)
        self.assertIn("out geom;", query)
        for road_class in ROAD_CLASSES:
            self.assertIn(road_class, query)


class FetchRoadWaysTests(unittest.TestCase):
    def test_keeps_ways_with_two_or_more_points(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(200, OVERPASS_PAYLOAD)))

        ways = fetch_road_ways(session, make_settings(), sleep=lambda _: None)

        self.assertEqual([way.way_id for way in ways], [101, 103])
        self.assertEqual(ways[0].highway, "primary")
        self.assertEqual(ways[0].tags["name"], "Usman Road")
        self.assertEqual(ways[1].highway, "unknown")
        self.assertEqual(
            ways[0].geojson(),
            {"type": "LineString", "coordinates": [[80.23, 13.04], [80.231, 13.041]]},
        )

    def test_posts_query_once_to_overpass(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(200, {"elements": []})))

        fetch_road_ways(session, make_settings(), sleep=lambda _: None)

        method, url, kwargs = session.calls[0]
        self.assertEqual(method, "POST")
        self.assertEqual(url, OVERPASS_URL)
        self.assertIn(b'way["highway"', kwargs["data"])
        self.assertEqual(kwargs["headers"]["Content-Type"], "text/plain")

    def test_uses_three_attempts(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(504)))

        with self.assertRaises(ServerError):
            fetch_road_ways(session, make_settings(), sleep=lambda _: None)

        self.assertEqual(len(session.calls), 3)

    def test_malformed_payload_raises_parse_error(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(200, {"elements": "nope"})))

        with self.assertRaises(ResponseParseError):
            fetch_road_ways(session, make_settings(), sleep=lambda _: None)

    def test_non_json_payload_raises_parse_error(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(200, body=b"<html>busy</html>")))

        with self.assertRaises(ResponseParseError):
            fetch_road_ways(session, make_settings(), sleep=lambda _: None)


class FetchAndStoreRoadsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = sqlite_session()

    def tearDown(self) -> None:
        self.db.close()

    def _count(self) -> int:
        return self.db.scalar(select(func.count()).select_from(OsmWay))

    @patch("hazard_ingest.service.roads.fetch_road_ways")
    def test_stores_ways_in_chunks(self, mock_fetch) -> None:
        mock_fetch.return_value = _ways(5)

        ok = fetch_and_store_roads(self.db, object(), make_settings(osm_batch_size=2))

        self.assertTrue(ok)
        self.assertEqual(self._count(), 5)
        stored = self.db.get(OsmWay, 1000)
        self.assertEqual(stored.highway, "residential")
        self.assertEqual(stored.geom["type"], "LineString")

    @patch("hazard_ingest.service.roads.fetch_road_ways")
    def test_rerun_upserts_by_way_id(self, mock_fetch) -> None:
        mock_fetch.return_value = _ways(3)

        fetch_and_store_roads(self.db, object(), make_settings())
        fetch_and_store_roads(self.db, object(), make_settings())

        self.assertEqual(self._count(), 3)

    @patch("hazard_ingest.service.roads.fetch_road_ways")
    def test_no_ways_is_failure(self, mock_fetch) -> None:
        mock_fetch.return_value = []

        self.assertFalse(fetch_and_store_roads(self.db, object(), make_settings()))

    @patch("hazard_ingest.service.roads.fetch_road_ways")
    def test_fetch_error_is_failure_not_exception(self, mock_fetch) -> None:
        mock_fetch.side_effect = ServerError("overpass down", status_code=504)

        self.assertFalse(fetch_and_store_roads(self.db, object(), make_settings()))

    @patch("hazard_ingest.service.roads.upsert_rows")
    @patch("hazard_ingest.service.roads.fetch_road_ways")
    def test_store_error_is_failure(self, mock_fetch, mock_upsert) -> None:
        mock_fetch.return_value = _ways(2)
        mock_upsert.side_effect = StoreError("chunk 1 failed")

        self.assertFalse(fetch_and_store_roads(self.db, object(), make_settings()))


if __name__ == "__main__":
    unittest.main()
