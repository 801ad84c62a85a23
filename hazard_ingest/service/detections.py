"""Turn image detections into hazard points and store them."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
import logging
import math
import time
from typing import Literal

from sqlalchemy.orm import Session

from hazard_ingest.config import AppSettings, BoundingBox
from hazard_ingest.db.models import HazardPoint
from hazard_ingest.db.upsert import StoreError, upsert_rows
from hazard_ingest.providers.http import Sleep
from hazard_ingest.providers.mapillary import DetectionBatchResult
from hazard_ingest.records import ImageRecord, PointRecord


LOGGER = logging.getLogger("hazard_ingest.service.detections")
TOP_FEATURE_CLASSES = 15

StoreStatus = Literal["stored", "nothing_to_store", "store_failed"]


@dataclass(frozen=True, slots=True)
class BuildResult:
    records: list[PointRecord]
    feature_classes: Counter[str]
    skipped_unclassified: int = 0
    dropped_out_of_bounds: int = 0


@dataclass(frozen=True, slots=True)
class StoreOutcome:
    status: StoreStatus
    stored: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "stored"


def _valid_coordinate(lat: float, lon: float) -> bool:
    return math.isfinite(lat) and math.isfinite(lon) and -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def build_point_records(
    images: list[ImageRecord],
    detections: DetectionBatchResult,
    bbox: BoundingBox,
) -> BuildResult:
    """Resolve each classified detection to a point inside ``bbox``.

    The detection's own point wins; otherwise the parent image location is used.
    Records sharing a dedup key collapse to the first occurrence.
    """
    records: dict[str, PointRecord] = {}
    feature_classes: Counter[str] = Counter()
    skipped = 0
    dropped = 0

    for image in images:
        for detection in detections.detections_for(image.image_id):
            if not detection.feature_class:
                skipped += 1
                continue

            if detection.has_point:
                lat, lon = detection.lat, detection.lon
            else:
                lat, lon = image.lat, image.lon

            if not _valid_coordinate(lat, lon) or not bbox.contains(lat, lon):
                dropped += 1
                continue

            record = PointRecord(
                image_id=image.image_id,
                lat=lat,
                lon=lon,
                captured_at=image.captured_at,
                feature_class=detection.feature_class,
                image_url=image.thumbnail_url,
            )
            records.setdefault(record.dedup_key, record)
            feature_classes[detection.feature_class] += 1

    return BuildResult(
        records=list(records.values()),
        feature_classes=feature_classes,
        skipped_unclassified=skipped,
        dropped_out_of_bounds=dropped,
    )


def store_point_records(
    session: Session,
    records: list[PointRecord],
    settings: AppSettings,
    sleep: Sleep = time.sleep,
) -> StoreOutcome:
    if not records:
        LOGGER.warning("No detections to store")
        return StoreOutcome(status="nothing_to_store")

    LOGGER.info("Inserting %s detections", len(records))
    try:
        stored = upsert_rows(
            session,
            HazardPoint.__table__,
            [record.as_row() for record in records],
            key_columns=["dedup_key"],
            chunk_size=settings.db_insert_batch_size,
            max_attempts=settings.store_max_attempts,
            retry_delay_seconds=settings.store_retry_delay_seconds,
            sleep=sleep,
        )
    except StoreError as exc:
        LOGGER.error("Storing detections failed: %s", exc)
        return StoreOutcome(status="store_failed", error=str(exc))

    LOGGER.info("Stored %s detections", stored)
    return StoreOutcome(status="stored", stored=stored)


def store_detections(
    session: Session,
    images: list[ImageRecord],
    detections: DetectionBatchResult,
    settings: AppSettings,
    sleep: Sleep = time.sleep,
) -> StoreOutcome:
    """Build point records for ``images`` and upsert them."""
    built = build_point_records(images, detections, settings.bbox)
    if built.skipped_unclassified or built.dropped_out_of_bounds:
        LOGGER.info(
            "Skipped %s detections without a class, dropped %s outside the bbox",
            built.skipped_unclassified,
            built.dropped_out_of_bounds,
        )
    _log_feature_classes(built.feature_classes)
    return store_point_records(session, built.records, settings, sleep=sleep)


def _log_feature_classes(feature_classes: Counter[str]) -> None:
    if not feature_classes:
        return
    LOGGER.info("Detection types (%s unique):", len(feature_classes))
    for name, count in feature_classes.most_common(TOP_FEATURE_CLASSES):
        LOGGER.info("  %s: %s", name, count)
    if len(feature_classes) > TOP_FEATURE_CLASSES:
        LOGGER.info("  ... and %s more types", len(feature_classes) - TOP_FEATURE_CLASSES)
