"""Scheduled ingestion worker entry point."""

from __future__ import annotations

import argparse
from dataclasses import replace
import logging
import os

from hazard_ingest.config import load_settings, parse_start_date
from hazard_ingest.db.session import get_session
from hazard_ingest.providers import build_http_session
from hazard_ingest.service import IngestionReport, run_ingestion


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
LOGGER = logging.getLogger("hazard_ingest.worker")


def build_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Run one road hazard ingestion pass for the configured bbox."
    )
    parser.add_argument(
        "--force-start-date",
        default=None,
        help="ISO-8601 start date for a full backfill; leaves the checkpoint untouched.",
    )
    return parser


def exit_code(report: IngestionReport) -> int:
    return 0 if report.succeeded else 1


def run(argv: list[str] | None = None) -> IngestionReport | None:
    """Run one ingestion pass; returns None when the run could not start."""
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
        if args.force_start_date:
            settings = replace(settings, force_start_date=parse_start_date(args.force_start_date))
        if not settings.mapillary_access_token:
            raise RuntimeError("MAPILLARY_ACCESS_TOKEN is not set")

        LOGGER.info("Starting ingestion for bbox %s", settings.bbox.overpass_bbox())
        with get_session(settings.database_url) as session, build_http_session(settings) as http:
            return run_ingestion(session=session, http=http, settings=settings)
    except Exception as exc:
        LOGGER.exception("Worker failed before completing a run: %s", exc)
        return None


def main(argv: list[str] | None = None) -> int:
    """Run the worker and return process exit code."""
    report = run(argv)
    if report is None:
        return 1
    return exit_code(report)


if __name__ == "__main__":
    raise SystemExit(main())
