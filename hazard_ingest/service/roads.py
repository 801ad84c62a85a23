"""Road network ingestion stage."""

from __future__ import annotations

import logging
import time

import requests
from sqlalchemy import func
from sqlalchemy.orm import Session

from hazard_ingest.config import AppSettings
from hazard_ingest.db.models import OsmWay
from hazard_ingest.db.upsert import upsert_rows
from hazard_ingest.providers.exceptions import IngestError
from hazard_ingest.providers.http import Sleep
from hazard_ingest.providers.overpass import fetch_road_ways


LOGGER = logging.getLogger("hazard_ingest.service.roads")


def fetch_and_store_roads(
    session: Session,
    http: requests.Session,
    settings: AppSettings,
    sleep: Sleep = time.sleep,
) -> bool:
    """Fetch whitelisted road ways for the bbox and upsert them by way id."""
    LOGGER.info("Fetching OSM ways for bbox %s", settings.bbox.overpass_bbox())
    try:
        ways = fetch_road_ways(http, settings, sleep=sleep)
        if not ways:
            LOGGER.warning("No OSM ways found")
            return False

        written = upsert_rows(
            session,
            OsmWay.__table__,
            [way.as_row() for way in ways],
            key_columns=["way_id"],
            chunk_size=settings.osm_batch_size,
            max_attempts=settings.store_max_attempts,
            retry_delay_seconds=settings.store_retry_delay_seconds,
            extra_updates={"updated_at": func.now()},
            sleep=sleep,
        )
    except IngestError as exc:
        LOGGER.error("OSM stage failed: %s", exc)
        return False

    LOGGER.info("Stored %s OSM ways", written)
    return True
