"""Database package."""

from .base import Base
from .models import HazardPoint, IngestionState, OsmWay
from .session import get_engine, get_session
from .upsert import StoreError, chunked, upsert_rows

__all__ = [
    "Base",
    "HazardPoint",
    "IngestionState",
    "OsmWay",
    "StoreError",
    "chunked",
    "get_engine",
    "get_session",
    "upsert_rows",
]
