"""Runtime configuration helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import os


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Axis-aligned lat/lon box the worker ingests."""

    lat_min: float
    lon_min: float
    lat_max: float
    lon_max: float

    def __post_init__(self) -> None:
        if not self.lat_min < self.lat_max:
            raise ValueError(f"lat_min must be below lat_max: {self.lat_min} >= {self.lat_max}")
        if not self.lon_min < self.lon_max:
            raise ValueError(f"lon_min must be below lon_max: {self.lon_min} >= {self.lon_max}")

    def contains(self, lat: float, lon: float) -> bool:
        """Return True when the point lies inside the box, edges included."""
        return self.lat_min <= lat <= self.lat_max and self.lon_min <= lon <= self.lon_max

    def overpass_bbox(self) -> str:
        # south,west,north,east
        return f"{self.lat_min},{self.lon_min},{self.lat_max},{self.lon_max}"

    def mapillary_bbox(self) -> str:
        # west,south,east,north
        return f"{self.lon_min},{self.lat_min},{self.lon_max},{self.lat_max}"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff and timeout settings for outbound HTTP calls."""

    max_attempts: int = 5
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 60.0
    timeout_seconds: float = 120.0

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay for a 1-based attempt number, capped."""
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


@dataclass(frozen=True)
class AppSettings:
    """Environment-backed settings for the ingestion worker."""

    database_url: str
    mapillary_access_token: str
    overpass_api_url: str
    mapillary_api_url: str
    bbox: BoundingBox
    cluster_eps_meters: float
    cluster_min_samples: int
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    overpass_max_attempts: int = 3
    detection_max_attempts: int = 2
    osm_batch_size: int = 500
    db_insert_batch_size: int = 500
    mapillary_page_limit: int = 2000
    page_delay_seconds: float = 1.0
    detection_batch_size: int = 20
    detection_batch_delay_seconds: float = 0.5
    store_max_attempts: int = 3
    store_retry_delay_seconds: float = 1.0
    default_lookback_days: int = 180
    force_start_date: datetime | None = None


DEFAULT_DATABASE_URL = "postgresql+psycopg://hazards:hazards@pg:5432/road_hazards"
DEFAULT_OVERPASS_API_URL = "https://overpass-api.de/api/interpreter"
DEFAULT_MAPILLARY_API_URL = "https://graph.mapillary.com"
# Chennai, T. Nagar
DEFAULT_BBOX = BoundingBox(lat_min=13.035, lon_min=80.225, lat_max=13.065, lon_max=80.255)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer for {name}: {value}") from exc


def _env_positive_int(name: str, default: int) -> int:
    value = _env_int(name, default)
    if value < 1:
        raise RuntimeError(f"{name} must be at least 1, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid float for {name}: {value}") from exc


def parse_start_date(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise RuntimeError(f"Invalid ISO-8601 start date: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _env_start_date(name: str) -> datetime | None:
    value = os.getenv(name)
    if not value:
        return None
    return parse_start_date(value)


def _load_bbox() -> BoundingBox:
    try:
        return BoundingBox(
            lat_min=_env_float("BBOX_LAT_MIN", DEFAULT_BBOX.lat_min),
            lon_min=_env_float("BBOX_LON_MIN", DEFAULT_BBOX.lon_min),
            lat_max=_env_float("BBOX_LAT_MAX", DEFAULT_BBOX.lat_max),
            lon_max=_env_float("BBOX_LON_MAX", DEFAULT_BBOX.lon_max),
        )
    except ValueError as exc:
        raise RuntimeError(f"Invalid bounding box: {exc}") from exc


def load_settings() -> AppSettings:
    """Load all app settings from the environment."""
    return AppSettings(
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        mapillary_access_token=os.getenv("MAPILLARY_ACCESS_TOKEN", ""),
        overpass_api_url=os.getenv("OVERPASS_API_URL", DEFAULT_OVERPASS_API_URL),
        mapillary_api_url=os.getenv("MAPILLARY_API_URL", DEFAULT_MAPILLARY_API_URL).rstrip("/"),
        bbox=_load_bbox(),
        cluster_eps_meters=_env_float("CLUSTER_EPS_METERS", 15.0),
        cluster_min_samples=_env_int("CLUSTER_MIN_SAMPLES", 2),
        retry=RetryPolicy(
            max_attempts=_env_positive_int("HTTP_MAX_ATTEMPTS", 5),
            base_delay_seconds=_env_float("HTTP_BASE_DELAY_SECONDS", 2.0),
            max_delay_seconds=_env_float("HTTP_MAX_DELAY_SECONDS", 60.0),
            timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 120.0),
        ),
        overpass_max_attempts=_env_positive_int("OVERPASS_MAX_ATTEMPTS", 3),
        detection_max_attempts=_env_positive_int("DETECTION_MAX_ATTEMPTS", 2),
        osm_batch_size=_env_positive_int("OSM_BATCH_SIZE", 500),
        db_insert_batch_size=_env_positive_int("DB_INSERT_BATCH_SIZE", 500),
        mapillary_page_limit=_env_positive_int("MAPILLARY_PAGE_LIMIT", 2000),
        page_delay_seconds=_env_float("PAGE_DELAY_SECONDS", 1.0),
        detection_batch_size=_env_positive_int("DETECTION_BATCH_SIZE", 20),
        detection_batch_delay_seconds=_env_float("DETECTION_BATCH_DELAY_SECONDS", 0.5),
        store_max_attempts=_env_positive_int("STORE_MAX_ATTEMPTS", 3),
        store_retry_delay_seconds=_env_float("STORE_RETRY_DELAY_SECONDS", 1.0),
        default_lookback_days=_env_int("DEFAULT_LOOKBACK_DAYS", 180),
        force_start_date=_env_start_date("FORCE_START_DATE"),
    )
