"""Fetch Mapillary images and detections for the bbox without touching the database."""

from __future__ import annotations

import argparse
from dataclasses import replace
from datetime import datetime, timedelta, timezone
import json
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from hazard_ingest.config import AppSettings, load_settings, parse_start_date
from hazard_ingest.providers import IngestError, build_http_session, fetch_all_detections, fetch_images
from hazard_ingest.service import build_point_records


def build_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Preview hazard points the worker would store for the configured bbox."
    )
    parser.add_argument(
        "--since",
        default=None,
        help="ISO-8601 lower bound for capture time (default: 7 days ago).",
    )
    parser.add_argument(
        "--max-images",
        type=int,
        default=200,
        help="Only look up detections for the first N images (default: 200).",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=15,
        help="Number of feature classes to list (default: 15).",
    )
    return parser


def _build_output(
    *,
    settings: AppSettings | None,
    since: datetime | None,
    images: int | None,
    images_with_detections: int | None,
    points_in_bbox: int | None,
    feature_classes: dict[str, int] | None,
    status: str,
    error: str | None,
) -> dict[str, object]:
    return {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "bbox": settings.bbox.mapillary_bbox() if settings is not None else None,
        "since": since.isoformat() if since is not None else None,
        "images": images,
        "images_with_detections": images_with_detections,
        "points_in_bbox": points_in_bbox,
        "feature_classes": feature_classes,
        "status": status,
        "error": error,
    }


def main(argv: list[str] | None = None) -> int:
    """Run the preview and return process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings: AppSettings | None = None
    since: datetime | None = None
    try:
        settings = load_settings()
        since = (
            parse_start_date(args.since)
            if args.since
            else datetime.now(timezone.utc) - timedelta(days=7)
        )
        # Preview runs are interactive; keep waits short.
        settings = replace(settings, page_delay_seconds=0.0)

        with build_http_session(settings) as http:
            images = fetch_images(http, settings, since)
            sample = images[: max(0, args.max_images)]
            detections = fetch_all_detections(http, settings, sample)

        built = build_point_records(sample, detections, settings.bbox)
        payload = _build_output(
            settings=settings,
            since=since,
            images=len(images),
            images_with_detections=detections.images_with_detections,
            points_in_bbox=len(built.records),
            feature_classes=dict(built.feature_classes.most_common(args.top)),
            status="ok",
            error=None,
        )
        print(json.dumps(payload, ensure_ascii=False))
        return 0
    except IngestError as exc:
        payload = _build_output(
            settings=settings,
            since=since,
            images=None,
            images_with_detections=None,
            points_in_bbox=None,
            feature_classes=None,
            status="error",
            error=str(exc),
        )
        print(json.dumps(payload, ensure_ascii=False))
        return 2
    except Exception as exc:
        payload = _build_output(
            settings=settings,
            since=since,
            images=None,
            images_with_detections=None,
            points_in_bbox=None,
            feature_classes=None,
            status="error",
            error=str(exc),
        )
        print(json.dumps(payload, ensure_ascii=False))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
