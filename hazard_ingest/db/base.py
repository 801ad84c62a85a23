"""Declarative base shared by all hazard tables."""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for hazard ingestion models; dict columns map to JSON."""

    type_annotation_map = {dict[str, Any]: JSON}
