"""create osm_ways, mapillary_detections and ingestion_state tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "osm_ways",
        sa.Column("way_id", sa.BigInteger(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("geom", sa.JSON(), nullable=False),
        sa.Column("highway", sa.String(length=50), nullable=False),
        sa.Column("tags_json", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_osm_ways_highway", "osm_ways", ["highway"])

    op.create_table(
        "mapillary_detections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("dedup_key", sa.String(length=40), nullable=False),
        sa.Column("image_id", sa.String(length=64), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lon", sa.Float(), nullable=False),
        sa.Column("geom", sa.Text(), nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("feature_class", sa.String(length=200), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("dedup_key", name="uq_mapillary_detections_dedup_key"),
    )
    op.create_index("ix_mapillary_detections_image_id", "mapillary_detections", ["image_id"])
    op.create_index("ix_mapillary_detections_captured_at", "mapillary_detections", ["captured_at"])
    op.create_index("ix_mapillary_detections_feature_class", "mapillary_detections", ["feature_class"])
    op.create_index("ix_mapillary_detections_lat_lon", "mapillary_detections", ["lat", "lon"])

    op.create_table(
        "ingestion_state",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("ingestion_state")
    op.drop_index("ix_mapillary_detections_lat_lon", table_name="mapillary_detections")
    op.drop_index("ix_mapillary_detections_feature_class", table_name="mapillary_detections")
    op.drop_index("ix_mapillary_detections_captured_at", table_name="mapillary_detections")
    op.drop_index("ix_mapillary_detections_image_id", table_name="mapillary_detections")
    op.drop_table("mapillary_detections")
    op.drop_index("ix_osm_ways_highway", table_name="osm_ways")
    op.drop_table("osm_ways")
