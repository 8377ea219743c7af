"""Persisted record store for patch notes.

A thin CRUD client over the patch_notes table. Every call opens its own
short-lived session; nothing is held between a read and a later write.
Optimistic concurrency is expressed through ``update(..., expect=...)``:
the UPDATE carries one equality predicate per expected column and reports
a lost race by returning None instead of raising.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repatch.db.models import PatchNote, PipelineRun
from repatch.orchestrator.errors import NotFound, StoreError

logger = logging.getLogger(__name__)

# Stored labels of an in-flight render, including the legacy one
ACTIVE_LABELS = ("queued", "rendering", "generating_video")


class PatchNoteStore:
    """Async CRUD client for PatchNote rows."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        if session_factory is None:
            from repatch.db.engine import async_session

            session_factory = async_session
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def create(self, **fields: Any) -> PatchNote:
        """Insert a new patch note; render state starts at idle."""
        try:
            async with self._session_factory() as session:
                note = PatchNote(**fields)
                session.add(note)
                await session.commit()
                await session.refresh(note)
                return note
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create patch note: {e}") from e

    async def get(self, key: uuid.UUID) -> PatchNote:
        """Load one row.

        Raises:
            NotFound: no row with this key
            StoreError: database fault
        """
        try:
            async with self._session_factory() as session:
                note = await session.get(PatchNote, key)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load patch note {key}: {e}") from e
        if note is None:
            raise NotFound(key)
        return note

    async def update(
        self,
        key: uuid.UUID,
        fields: Mapping[str, Any],
        expect: Optional[Mapping[str, Any]] = None,
    ) -> Optional[PatchNote]:
        """Update a row, optionally conditioned on column equality.

        Args:
            key: Patch note id
            fields: Column -> new value
            expect: Column -> value the row must still hold for the write
                to apply (compare-and-swap). None means unconditional.

        Returns:
            The row as written, or None if no row matched (missing row or,
            with ``expect``, a concurrent change).
        """
        stmt = update(PatchNote).where(PatchNote.id == key)
        for column_name, expected in (expect or {}).items():
            column = getattr(PatchNote, column_name)
            if expected is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == expected)
        stmt = stmt.values(**fields).execution_options(synchronize_session=False)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    await session.rollback()
                    logger.debug("Conditional update matched no rows for %s (expect=%s)", key, expect)
                    return None
                # Re-read inside the same transaction so the caller sees exactly what was written
                note = await session.get(PatchNote, key, populate_existing=True)
                await session.commit()
                return note
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update patch note {key}: {e}") from e

    async def list_active(self, updated_before: Optional[datetime] = None) -> list[PatchNote]:
        """Rows whose render is queued or rendering, optionally stale ones only."""
        stmt = select(PatchNote).where(PatchNote.render_state.in_(ACTIVE_LABELS))
        if updated_before is not None:
            stmt = stmt.where(PatchNote.updated_at < updated_before)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt.order_by(PatchNote.updated_at))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list active renders: {e}") from e

    async def create_run(self, patch_note_id: uuid.UUID) -> uuid.UUID:
        """Open a PipelineRun record; returns its id."""
        try:
            async with self._session_factory() as session:
                run = PipelineRun(patch_note_id=patch_note_id)
                session.add(run)
                await session.commit()
                return run.id
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create pipeline run for {patch_note_id}: {e}") from e

    async def finish_run(
        self,
        run_id: uuid.UUID,
        duration_seconds: float,
        log: dict[str, Any],
        outcome: str,
    ) -> None:
        """Close a PipelineRun with its timings and outcome."""
        try:
            async with self._session_factory() as session:
                run = await session.get(PipelineRun, run_id)
                if run is None:
                    return
                run.completed_at = datetime.utcnow()
                run.total_duration_seconds = duration_seconds
                run.log = log
                run.outcome = outcome
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to finish pipeline run {run_id}: {e}") from e

    async def list_runs(self, patch_note_id: uuid.UUID) -> list[PipelineRun]:
        """Pipeline runs for a patch note, newest first."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PipelineRun)
                    .where(PipelineRun.patch_note_id == patch_note_id)
                    .order_by(PipelineRun.started_at.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list pipeline runs for {patch_note_id}: {e}") from e

    async def list_recent(self, limit: int = 50) -> list[PatchNote]:
        """Most recently created rows first."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PatchNote).order_by(PatchNote.created_at.desc()).limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list patch notes: {e}") from e
