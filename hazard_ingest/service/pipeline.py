"""End-to-end ingestion run: roads, imagery, detections, clustering, checkpoint."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import time
from typing import Literal

import requests
from sqlalchemy.orm import Session

from hazard_ingest.config import AppSettings
from hazard_ingest.providers.exceptions import IngestError
from hazard_ingest.providers.http import Sleep
from hazard_ingest.providers.mapillary import fetch_all_detections, fetch_images

from .clustering import cluster_recent_detections
from .detections import store_detections
from .roads import fetch_and_store_roads
from .state import read_last_run_at, write_last_run_at


LOGGER = logging.getLogger("hazard_ingest.service.pipeline")

StageStatus = Literal["ok", "failed", "skipped"]


@dataclass(slots=True)
class IngestionReport:
    """Per-stage result of one ingestion run."""

    started_at: datetime
    since: datetime | None = None
    forced_backfill: bool = False
    roads: StageStatus = "skipped"
    imagery: StageStatus = "skipped"
    clustering: StageStatus = "skipped"
    checkpoint_written: bool = False
    images_fetched: int = 0
    points_stored: int = 0
    fatal_error: str | None = None

    @property
    def succeeded(self) -> bool:
        if self.fatal_error is not None:
            return False
        return self.roads == "ok" or self.imagery == "ok"


def resolve_start_date(session: Session, settings: AppSettings, now: datetime) -> datetime:
    """Forced start date, else the stored checkpoint, else the default lookback."""
    if settings.force_start_date is not None:
        return settings.force_start_date
    last_run_at = read_last_run_at(session)
    if last_run_at is not None:
        return last_run_at
    return now - timedelta(days=settings.default_lookback_days)


def run_ingestion(
    session: Session,
    http: requests.Session,
    settings: AppSettings,
    now: datetime | None = None,
    sleep: Sleep = time.sleep,
) -> IngestionReport:
    """Run every stage once and return the report; never raises."""
    started_at = now or datetime.now(timezone.utc)
    report = IngestionReport(
        started_at=started_at,
        forced_backfill=settings.force_start_date is not None,
    )

    try:
        report.since = resolve_start_date(session, settings, started_at)
        LOGGER.info(
            "Mode: %s; start date %s; bbox %s",
            "FORCED BACKFILL" if report.forced_backfill else "INCREMENTAL",
            report.since.isoformat(),
            settings.bbox.overpass_bbox(),
        )

        report.roads = "ok" if fetch_and_store_roads(session, http, settings, sleep=sleep) else "failed"
        report.imagery = "ok" if _run_imagery_branch(session, http, settings, report, sleep) else "failed"

        if report.imagery == "ok":
            report.clustering = "ok" if cluster_recent_detections(session, settings) else "failed"

        if not report.forced_backfill:
            try:
                write_last_run_at(session, started_at)
                report.checkpoint_written = True
            except IngestError as exc:
                LOGGER.error("Checkpoint update failed: %s", exc)
    except Exception as exc:
        LOGGER.exception("Ingestion run aborted: %s", exc)
        report.fatal_error = f"{type(exc).__name__}: {exc}"

    log_summary(report)
    return report


def _run_imagery_branch(
    session: Session,
    http: requests.Session,
    settings: AppSettings,
    report: IngestionReport,
    sleep: Sleep,
) -> bool:
    try:
        images = fetch_images(http, settings, report.since, sleep=sleep)
    except IngestError as exc:
        LOGGER.error("Imagery stage failed: %s", exc)
        return False

    report.images_fetched = len(images)
    if not images:
        LOGGER.info("No images found in this area")
        return True

    detections = fetch_all_detections(http, settings, images, sleep=sleep)
    if detections.images_with_detections == 0:
        LOGGER.info("No detections found for any image; they may not be processed yet")
        return True

    outcome = store_detections(session, images, detections, settings, sleep=sleep)
    report.points_stored = outcome.stored
    return outcome.ok


def log_summary(report: IngestionReport) -> None:
    LOGGER.info("Ingestion summary")
    LOGGER.info("  OSM data:       %s", report.roads)
    LOGGER.info(
        "  Mapillary data: %s (%s images, %s points)",
        report.imagery,
        report.images_fetched,
        report.points_stored,
    )
    LOGGER.info("  Clustering:     %s", report.clustering)
    LOGGER.info("  Checkpoint:     %s", "written" if report.checkpoint_written else "unchanged")
    if report.fatal_error is not None:
        LOGGER.error("  Fatal error:    %s", report.fatal_error)
    elif report.succeeded:
        LOGGER.info("Ingestion completed")
    else:
        LOGGER.warning("Ingestion completed with failures")
