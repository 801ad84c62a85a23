"""Trigger for the database-side hazard clustering function."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hazard_ingest.config import AppSettings


LOGGER = logging.getLogger("hazard_ingest.service.clustering")
CLUSTER_STATEMENT = text("SELECT cluster_recent_detections(:eps_meters, :min_points)")


def cluster_recent_detections(session: Session, settings: AppSettings) -> bool:
    """Run the opaque clustering procedure over recently stored points."""
    LOGGER.info(
        "Clustering detections: eps=%sm min_points=%s",
        settings.cluster_eps_meters,
        settings.cluster_min_samples,
    )
    try:
        session.execute(
            CLUSTER_STATEMENT,
            {
                "eps_meters": settings.cluster_eps_meters,
                "min_points": settings.cluster_min_samples,
            },
        )
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        LOGGER.error("Clustering failed: %s", exc)
        return False

    LOGGER.info("Clustering completed")
    return True
