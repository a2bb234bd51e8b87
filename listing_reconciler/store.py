"""
Datastore for runs, records and the dedup cache.

Every write goes through the pydantic model first (`model_validate`), so a
shape that the in-memory contract would reject can never be persisted.
Each public method runs in its own transaction; a status poller reading a
run always sees the last fully committed snapshot.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .database import init_db, make_engine, make_session_factory
from .exceptions import RecordNotFoundError, RunNotFoundError
from .models import DedupCacheEntry, ProcessingStatus, PropertyRecord, RunState, utc_now
from .tables import DedupCacheRow, PropertyRow, RunRow

logger = logging.getLogger(__name__)


class ListingStore:
    """Create/read/update access to run, record and dedup-cache rows."""

    def __init__(self, database_url: str = "sqlite://", engine: Optional[Engine] = None):
        self.engine = engine or make_engine(database_url)
        self._sessions = make_session_factory(self.engine)
        init_db(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # ─── Runs ────────────────────────────────────────────────────────

    def create_run(self, run: RunState) -> RunState:
        run = RunState.model_validate(run.model_dump())
        with self._sessions.begin() as session:
            session.add(self._run_row(run))
        return run

    def update_run(self, run: RunState) -> RunState:
        """Persist the whole run snapshot atomically."""
        run = RunState.model_validate(run.model_dump())
        with self._sessions.begin() as session:
            session.merge(self._run_row(run))
        return run

    def get_run(self, run_id: str) -> RunState:
        with self._sessions() as session:
            row = session.get(RunRow, run_id)
            if row is None:
                raise RunNotFoundError(run_id)
            return RunState.model_validate(row.data)

    def list_runs(self, limit: int = 20) -> list[RunState]:
        with self._sessions() as session:
            rows = session.scalars(
                select(RunRow).order_by(RunRow.created_at.desc()).limit(limit)
            ).all()
            return [RunState.model_validate(row.data) for row in rows]

    # ─── Records ─────────────────────────────────────────────────────

    def upsert_records(self, records: Iterable[PropertyRecord]) -> int:
        """Insert or replace records by id. Returns the number written."""
        with self._sessions.begin() as session:
            count = self._merge_records(session, records)
        logger.debug("Upserted %d records", count)
        return count

    def save_dedup(
        self, records: Iterable[PropertyRecord], entries: Iterable[DedupCacheEntry]
    ) -> int:
        """Write dedup outcomes and their new cache entries in one transaction.

        If any record fails to persist, none of the cache entries are kept,
        so a retried upload is not discarded against records that were never saved.
        """
        with self._sessions.begin() as session:
            for entry in entries:
                session.add(self._cache_row(entry))
            count = self._merge_records(session, records)
        logger.debug("Saved %d deduplicated records", count)
        return count

    def get_records(
        self, run_id: str, status: Optional[ProcessingStatus] = None
    ) -> list[PropertyRecord]:
        stmt = select(PropertyRow).where(PropertyRow.run_id == run_id)
        if status is not None:
            stmt = stmt.where(PropertyRow.status == status.value)
        stmt = stmt.order_by(PropertyRow.source_page, PropertyRow.id)
        with self._sessions() as session:
            return [PropertyRecord.model_validate(row.data) for row in session.scalars(stmt)]

    def get_record(self, record_id: str) -> PropertyRecord:
        with self._sessions() as session:
            row = session.get(PropertyRow, record_id)
            if row is None:
                raise RecordNotFoundError(record_id)
            return PropertyRecord.model_validate(row.data)

    # ─── Dedup Cache ─────────────────────────────────────────────────

    def add_cache_entry(self, entry: DedupCacheEntry) -> None:
        with self._sessions.begin() as session:
            session.add(self._cache_row(entry))

    def find_cache_by_address(self, address_normalized: str) -> DedupCacheEntry | None:
        return self._find_cache(DedupCacheRow.address_normalized == address_normalized)

    def find_cache_by_url(self, url_normalized: str) -> DedupCacheEntry | None:
        return self._find_cache(DedupCacheRow.url_normalized == url_normalized)

    def _find_cache(self, condition) -> DedupCacheEntry | None:
        # Matches across all runs.
        stmt = select(DedupCacheRow).where(condition).order_by(DedupCacheRow.created_at).limit(1)
        with self._sessions() as session:
            row = session.scalars(stmt).first()
            if row is None:
                return None
            return DedupCacheEntry(
                id=row.id,
                address_normalized=row.address_normalized,
                url_normalized=row.url_normalized,
                run_id=row.run_id,
                created_at=row.created_at,
            )

    # ─── Internal ────────────────────────────────────────────────────

    @staticmethod
    def _run_row(run: RunState) -> RunRow:
        return RunRow(
            id=run.id,
            file_hash=run.file_hash,
            file_name=run.file_name,
            status=run.status.value,
            progress=run.progress,
            data=run.model_dump(mode="json"),
            created_at=run.created_at,
            updated_at=utc_now(),
        )

    @staticmethod
    def _record_row(record: PropertyRecord) -> PropertyRow:
        validated = PropertyRecord.model_validate(record.model_dump())
        return PropertyRow(
            id=validated.id,
            run_id=validated.run_id,
            status=validated.status.value,
            source_page=validated.source_page,
            data=validated.model_dump(mode="json"),
            updated_at=validated.updated_at,
        )

    @staticmethod
    def _cache_row(entry: DedupCacheEntry) -> DedupCacheRow:
        return DedupCacheRow(
            id=entry.id,
            address_normalized=entry.address_normalized,
            url_normalized=entry.url_normalized,
            run_id=entry.run_id,
            created_at=entry.created_at,
        )

    def _merge_records(self, session: Session, records: Iterable[PropertyRecord]) -> int:
        count = 0
        for record in records:
            session.merge(self._record_row(record))
            count += 1
        return count
