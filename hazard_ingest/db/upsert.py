"""Chunked insert-or-update writes."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
import logging
import time
from typing import Any, TypeVar

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from hazard_ingest.providers.exceptions import IngestError


LOGGER = logging.getLogger("hazard_ingest.db.upsert")
T = TypeVar("T")


class StoreError(IngestError):
    """Raised when a chunk cannot be written to the store."""


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def upsert_rows(
    session: Session,
    table: Table,
    rows: Sequence[dict[str, Any]],
    *,
    key_columns: Sequence[str],
    chunk_size: int,
    max_attempts: int = 1,
    retry_delay_seconds: float = 0.0,
    extra_updates: dict[str, Any] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Upsert ``rows`` chunk by chunk, committing after each chunk.

    A chunk hitting a transient database error is retried whole. When a chunk
    still fails, ``StoreError`` is raised; chunks committed before it stay.
    """
    if not rows:
        return 0

    update_columns = [name for name in rows[0] if name not in key_columns]
    written = 0
    for index, chunk in enumerate(chunked(rows, chunk_size), start=1):
        _write_chunk(
            session,
            table,
            list(chunk),
            key_columns=key_columns,
            update_columns=update_columns,
            extra_updates=extra_updates or {},
            max_attempts=max(1, max_attempts),
            retry_delay_seconds=retry_delay_seconds,
            sleep=sleep,
            chunk_index=index,
        )
        written += len(chunk)
    return written


def _write_chunk(
    session: Session,
    table: Table,
    chunk: list[dict[str, Any]],
    *,
    key_columns: Sequence[str],
    update_columns: Sequence[str],
    extra_updates: dict[str, Any],
    max_attempts: int,
    retry_delay_seconds: float,
    sleep: Callable[[float], None],
    chunk_index: int,
) -> None:
    for attempt in range(1, max_attempts + 1):
        try:
            stmt = _insert_for(session)(table).values(chunk)
            updates = {name: stmt.excluded[name] for name in update_columns}
            updates.update(extra_updates)
            if updates:
                stmt = stmt.on_conflict_do_update(index_elements=list(key_columns), set_=updates)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(key_columns))
            session.execute(stmt)
            session.commit()
            return
        except SQLAlchemyError as exc:
            session.rollback()
            if attempt < max_attempts and _is_transient(exc):
                LOGGER.warning(
                    "Chunk %s into %s failed (attempt %s/%s): %s",
                    chunk_index,
                    table.name,
                    attempt,
                    max_attempts,
                    exc,
                )
                sleep(retry_delay_seconds)
                continue
            raise StoreError(
                f"Upsert of chunk {chunk_index} ({len(chunk)} rows) into {table.name} failed: {exc}"
            ) from exc


def _insert_for(session: Session):
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


def _is_transient(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated
