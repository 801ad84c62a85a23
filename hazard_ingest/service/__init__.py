"""Service-layer business logic."""

from .clustering import cluster_recent_detections
from .detections import BuildResult, StoreOutcome, build_point_records, store_detections, store_point_records
from .pipeline import IngestionReport, resolve_start_date, run_ingestion
from .roads import fetch_and_store_roads
from .state import read_last_run_at, write_last_run_at

__all__ = [
    "BuildResult",
    "IngestionReport",
    "StoreOutcome",
    "build_point_records",
    "cluster_recent_detections",
    "fetch_and_store_roads",
    "read_last_run_at",
    "resolve_start_date",
    "run_ingestion",
    "store_detections",
    "store_point_records",
    "write_last_run_at",
]
