"""Mapillary Graph API: image metadata and per-image detections."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import time
from typing import Final

import requests

from hazard_ingest.config import AppSettings, BoundingBox
from hazard_ingest.records import DetectionRecord, ImageRecord

from .exceptions import IngestError, PartialDataError
from .http import Sleep, fetch_with_retry, redact_tokens
from .schemas import (
    MapillaryDetection,
    MapillaryDetectionPage,
    MapillaryImage,
    MapillaryImagePage,
    parse_response,
)


LOGGER = logging.getLogger("hazard_ingest.providers.mapillary")
IMAGE_FIELDS: Final[str] = "id,geometry,captured_at,sequence,thumb_256_url"
DETECTION_FIELDS: Final[str] = "id,value,created_at,geometry"


@dataclass(frozen=True, slots=True)
class DetectionOutcome:
    """Detections for one image; a failed lookup carries ``error`` and no detections."""

    image_id: str
    detections: tuple[DetectionRecord, ...] = ()
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class DetectionBatchResult:
    outcomes: dict[str, DetectionOutcome] = field(default_factory=dict)
    images_processed: int = 0
    images_with_detections: int = 0
    total_detections: int = 0
    failed_images: int = 0

    def detections_for(self, image_id: str) -> tuple[DetectionRecord, ...]:
        outcome = self.outcomes.get(image_id)
        return outcome.detections if outcome is not None else ()

    def record(self, outcome: DetectionOutcome) -> None:
        self.outcomes[outcome.image_id] = outcome
        self.images_processed += 1
        if outcome.failed:
            self.failed_images += 1
        if outcome.detections:
            self.images_with_detections += 1
            self.total_detections += len(outcome.detections)


def format_start_date(since: datetime) -> str:
    """Format a timestamp the way ``start_captured_at`` expects it."""
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def fetch_images(
    session: requests.Session,
    settings: AppSettings,
    since: datetime,
    bbox: BoundingBox | None = None,
    sleep: Sleep = time.sleep,
) -> list[ImageRecord]:
    """Collect every image captured at or after ``since`` inside the bbox.

    Follows ``paging.next`` until the cursor runs out. A failure after at least
    one good page returns what was gathered so far; a failure on the first page
    raises ``PartialDataError``.
    """
    area = bbox or settings.bbox
    next_url: str | None = f"{settings.mapillary_api_url}/images"
    params: dict[str, str | int] | None = {
        "fields": IMAGE_FIELDS,
        "bbox": area.mapillary_bbox(),
        "start_captured_at": format_start_date(since),
        "limit": settings.mapillary_page_limit,
        "access_token": settings.mapillary_access_token,
    }
    images: list[ImageRecord] = []
    page = 1

    while next_url:
        try:
            response = fetch_with_retry(
                session,
                next_url,
                policy=settings.retry,
                sleep=sleep,
                params=params,
            )
            payload = parse_response(response, MapillaryImagePage)
        except IngestError as exc:
            if page > 1:
                LOGGER.warning(
                    "Image page %s failed (%s); continuing with %s images",
                    page,
                    exc,
                    len(images),
                )
                break
            raise PartialDataError(f"First image page failed: {exc}") from exc

        images.extend(_to_image_record(image) for image in payload.data)
        LOGGER.info("Image page %s: %s images (total %s)", page, len(payload.data), len(images))

        # The cursor URL already carries every query parameter.
        next_url = payload.paging.next
        params = None
        page += 1
        if next_url:
            sleep(settings.page_delay_seconds)

    return images


def fetch_image_detections(
    session: requests.Session,
    settings: AppSettings,
    image_id: str,
    sleep: Sleep = time.sleep,
) -> DetectionOutcome:
    """Fetch detections for one image; failures degrade to an empty outcome."""
    url = f"{settings.mapillary_api_url}/{image_id}/detections"
    try:
        response = fetch_with_retry(
            session,
            url,
            policy=settings.retry,
            max_attempts=settings.detection_max_attempts,
            sleep=sleep,
            params={"fields": DETECTION_FIELDS, "access_token": settings.mapillary_access_token},
        )
        payload = parse_response(response, MapillaryDetectionPage)
    except IngestError as exc:
        LOGGER.debug("Detections for image %s unavailable: %s", image_id, exc)
        return DetectionOutcome(image_id=image_id, error=redact_tokens(str(exc)))
    except Exception as exc:
        # one image must never take its batch down with it
        LOGGER.warning("Detections lookup for image %s crashed: %s: %s", image_id, type(exc).__name__, exc)
        return DetectionOutcome(image_id=image_id, error=redact_tokens(f"{type(exc).__name__}: {exc}"))

    return DetectionOutcome(
        image_id=image_id,
        detections=tuple(_to_detection_record(image_id, item) for item in payload.data),
    )


def fetch_all_detections(
    session: requests.Session,
    settings: AppSettings,
    images: list[ImageRecord],
    sleep: Sleep = time.sleep,
) -> DetectionBatchResult:
    """Fetch detections for all images in blocking concurrent batches."""
    batch_size = max(1, settings.detection_batch_size)
    total_batches = (len(images) + batch_size - 1) // batch_size
    result = DetectionBatchResult()
    LOGGER.info(
        "Fetching detections for %s images, %s concurrent requests per batch",
        len(images),
        batch_size,
    )

    def lookup(image: ImageRecord) -> DetectionOutcome:
        return fetch_image_detections(session, settings, image.image_id, sleep=sleep)

    with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="detections") as executor:
        for batch_index, start in enumerate(range(0, len(images), batch_size), start=1):
            batch = images[start:start + batch_size]
            for outcome in executor.map(lookup, batch):
                result.record(outcome)

            LOGGER.info(
                "Batch %s/%s: processed %s/%s (%s with detections, %s total, %s failed)",
                batch_index,
                total_batches,
                result.images_processed,
                len(images),
                result.images_with_detections,
                result.total_detections,
                result.failed_images,
            )
            if start + batch_size < len(images):
                sleep(settings.detection_batch_delay_seconds)

    if images:
        LOGGER.info(
            "Detection summary: images=%s with_detections=%s (%s%%) detections=%s failed=%s",
            result.images_processed,
            result.images_with_detections,
            round(result.images_with_detections * 100 / len(images)),
            result.total_detections,
            result.failed_images,
        )
    return result


def _to_image_record(image: MapillaryImage) -> ImageRecord:
    return ImageRecord(
        image_id=image.id,
        lat=image.geometry.lat,
        lon=image.geometry.lon,
        captured_at=image.captured_at,
        sequence_id=image.sequence,
        thumbnail_url=image.thumb_256_url,
    )


def _to_detection_record(image_id: str, detection: MapillaryDetection) -> DetectionRecord:
    point = detection.geometry
    return DetectionRecord(
        image_id=image_id,
        feature_class=detection.value or None,
        lat=point.lat if point is not None else None,
        lon=point.lon if point is not None else None,
        detection_id=detection.id,
        created_at=detection.created_at,
    )
