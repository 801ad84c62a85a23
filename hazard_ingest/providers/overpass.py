"""OpenStreetMap road ways via the Overpass API."""

from __future__ import annotations

import logging
import time
from typing import Final

import requests

from hazard_ingest.config import AppSettings, BoundingBox
from hazard_ingest.records import WayRecord

from .http import Sleep, fetch_with_retry
from .schemas import OverpassElement, OverpassResponse, parse_response


LOGGER = logging.getLogger("hazard_ingest.providers.overpass")
ROAD_CLASSES: Final[tuple[str, ...]] = (
    "motorway",
    "trunk",
    "primary",
    "secondary",
    "tertiary",
    "residential",
    "service",
)
QUERY_TIMEOUT_SECONDS: Final[int] = 90


def build_road_query(bbox: BoundingBox) -> str:
    """Overpass QL selecting whitelisted highway ways with inline geometry."""
    classes = "|".join(ROAD_CLASSES)
    return (
        f"[out:json][timeout:{QUERY_TIMEOUT_SECONDS}];\n"
        f'(way["highway"~"^({classes})$"]({bbox.overpass_bbox()}););\n'
        "out geom;\n"
    )


def fetch_road_ways(
    session: requests.Session,
    settings: AppSettings,
    sleep: Sleep = time.sleep,
) -> list[WayRecord]:
    """Fetch road ways inside the configured bbox.

    Raises ``FetchError`` or ``ResponseParseError`` on failure.
    """
    response = fetch_with_retry(
        session,
        settings.overpass_api_url,
        method="POST",
        policy=settings.retry,
        max_attempts=settings.overpass_max_attempts,
        sleep=sleep,
        data=build_road_query(settings.bbox).encode("utf-8"),
        headers={"Content-Type": "text/plain"},
    )
    payload = parse_response(response, OverpassResponse)

    ways = [element for element in payload.elements if element.type == "way"]
    records = [record for record in map(_to_way_record, ways) if record is not None]
    LOGGER.info(
        "Overpass returned %s ways; %s usable after geometry filter",
        len(ways),
        len(records),
    )
    return records


def _to_way_record(element: OverpassElement) -> WayRecord | None:
    if not element.geometry or len(element.geometry) < 2:
        return None
    return WayRecord(
        way_id=element.id,
        vertices=tuple((vertex.lat, vertex.lon) for vertex in element.geometry),
        highway=element.tags.get("highway", "unknown"),
        tags=dict(element.tags),
    )
