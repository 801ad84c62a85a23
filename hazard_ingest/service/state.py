"""Incremental checkpoint stored in the ingestion_state singleton."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from hazard_ingest.db.models import IngestionState
from hazard_ingest.db.upsert import upsert_rows


STATE_ROW_ID = 1


def read_last_run_at(session: Session) -> datetime | None:
    state = session.get(IngestionState, STATE_ROW_ID)
    if state is None or state.last_run_at is None:
        return None
    last_run_at = state.last_run_at
    # SQLite hands back naive datetimes.
    if last_run_at.tzinfo is None:
        last_run_at = last_run_at.replace(tzinfo=timezone.utc)
    return last_run_at


def write_last_run_at(session: Session, when: datetime) -> None:
    """Upsert the checkpoint row; raises ``StoreError`` on failure."""
    upsert_rows(
        session,
        IngestionState.__table__,
        [{"id": STATE_ROW_ID, "last_run_at": when}],
        key_columns=["id"],
        chunk_size=1,
    )
