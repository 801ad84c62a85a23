"""Wire schemas for Overpass and Mapillary responses."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
import requests

from .exceptions import ResponseParseError


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class OverpassVertex(_WireModel):
    lat: float
    lon: float


class OverpassElement(_WireModel):
    type: str
    id: int
    geometry: list[OverpassVertex] | None = None
    tags: dict[str, str] = Field(default_factory=dict)


class OverpassResponse(_WireModel):
    elements: list[OverpassElement] = Field(default_factory=list)


class PointGeometry(_WireModel):
    """GeoJSON point; coordinates are (lon, lat)."""

    type: Literal["Point"]
    coordinates: tuple[float, float]

    @property
    def lon(self) -> float:
        return self.coordinates[0]

    @property
    def lat(self) -> float:
        return self.coordinates[1]


def _to_utc(value: Any) -> Any:
    # Mapillary sends captured_at as epoch milliseconds; some endpoints send ISO-8601.
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    return value


class MapillaryImage(_WireModel):
    id: str
    geometry: PointGeometry
    captured_at: datetime
    sequence: str | None = None
    thumb_256_url: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("captured_at", mode="before")
    @classmethod
    def _parse_captured_at(cls, value: Any) -> Any:
        return _to_utc(value)

    @field_validator("captured_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class MapillaryPaging(_WireModel):
    next: str | None = None


class MapillaryImagePage(_WireModel):
    data: list[MapillaryImage] = Field(default_factory=list)
    paging: MapillaryPaging = Field(default_factory=MapillaryPaging)


class MapillaryDetection(_WireModel):
    id: str | None = None
    value: str | None = None
    geometry: PointGeometry | None = None
    created_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("geometry", mode="before")
    @classmethod
    def _only_points(cls, value: Any) -> Any:
        # The detections endpoint usually returns an encoded vector tile string here.
        if isinstance(value, dict) and value.get("type") == "Point":
            return value
        return None

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)
        return _to_utc(value)


class MapillaryDetectionPage(_WireModel):
    data: list[MapillaryDetection] = Field(default_factory=list)


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_response(response: requests.Response, model: type[ModelT]) -> ModelT:
    """Decode a JSON body into ``model`` or raise ``ResponseParseError``."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise ResponseParseError(f"{model.__name__}: body is not valid JSON") from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ResponseParseError(
            f"{model.__name__}: {exc.error_count()} validation error(s): {exc.errors()[0]['msg']}"
        ) from exc
