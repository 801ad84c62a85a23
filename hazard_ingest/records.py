"""Normalized records passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import hashlib
from typing import Any


@dataclass(frozen=True, slots=True)
class WayRecord:
    """One OSM road way with its ordered (lat, lon) vertices."""

    way_id: int
    vertices: tuple[tuple[float, float], ...]
    highway: str
    tags: dict[str, str] = field(default_factory=dict)

    def geojson(self) -> dict[str, Any]:
        return {
            "type": "LineString",
            "coordinates": [[lon, lat] for lat, lon in self.vertices],
        }

    def as_row(self) -> dict[str, Any]:
        return {
            "way_id": self.way_id,
            "geom": self.geojson(),
            "highway": self.highway,
            "tags_json": dict(self.tags),
        }


@dataclass(frozen=True, slots=True)
class ImageRecord:
    """Street-level image metadata; never persisted."""

    image_id: str
    lat: float
    lon: float
    captured_at: datetime
    sequence_id: str | None
    thumbnail_url: str | None


@dataclass(frozen=True, slots=True)
class DetectionRecord:
    image_id: str
    feature_class: str | None
    lat: float | None = None
    lon: float | None = None
    detection_id: str | None = None
    created_at: datetime | None = None

    @property
    def has_point(self) -> bool:
        return self.lat is not None and self.lon is not None


@dataclass(frozen=True, slots=True)
class PointRecord:
    """Geotagged hazard point ready for storage."""

    image_id: str
    lat: float
    lon: float
    captured_at: datetime
    feature_class: str
    image_url: str | None
    confidence: float | None = None

    @property
    def geom(self) -> str:
        return f"POINT({self.lon} {self.lat})"

    @property
    def dedup_key(self) -> str:
        """Stable idempotency key: image, class and position rounded to ~1cm."""
        raw = f"{self.image_id}|{self.feature_class}|{self.lat:.7f}|{self.lon:.7f}"
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()

    def as_row(self) -> dict[str, Any]:
        return {
            "dedup_key": self.dedup_key,
            "image_id": self.image_id,
            "lat": self.lat,
            "lon": self.lon,
            "geom": self.geom,
            "captured_at": self.captured_at,
            "feature_class": self.feature_class,
            "confidence": self.confidence,
            "image_url": self.image_url,
        }
