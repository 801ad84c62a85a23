"""External data providers for road hazard ingestion."""

from .exceptions import (
    ClientError,
    FetchError,
    IngestError,
    NetworkError,
    PartialDataError,
    RateLimited,
    ResponseParseError,
    ServerError,
)
from .http import build_http_session, fetch_with_retry, redact_tokens
from .mapillary import (
    DetectionBatchResult,
    DetectionOutcome,
    fetch_all_detections,
    fetch_image_detections,
    fetch_images,
)
from .overpass import ROAD_CLASSES, build_road_query, fetch_road_ways

__all__ = [
    "ClientError",
    "DetectionBatchResult",
    "DetectionOutcome",
    "FetchError",
    "IngestError",
    "NetworkError",
    "PartialDataError",
    "ROAD_CLASSES",
    "RateLimited",
    "ResponseParseError",
    "ServerError",
    "build_http_session",
    "build_road_query",
    "fetch_all_detections",
    "fetch_image_detections",
    "fetch_images",
    "fetch_road_ways",
    "fetch_with_retry",
    "redact_tokens",
]
