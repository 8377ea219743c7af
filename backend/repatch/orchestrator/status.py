"""Status reader: loads one render job and normalizes its stored state."""

import logging
import time
import uuid
from typing import Optional

from repatch.db.models import PatchNote
from repatch.db.store import PatchNoteStore
from repatch.orchestrator.state import (
    RenderState,
    is_active,
    parse_pipeline_status,
    parse_state,
)
from repatch.schemas.render import RenderJob

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Video rendering failed"


def effective_state(row: PatchNote) -> RenderState:
    """Render state a row is treated as holding.

    A stored video_url always means completed, even if the state column was
    left behind by an interrupted write. A completed label with no video_url
    comes from legacy rows that finished content without ever rendering, and
    reads as idle.
    """
    if row.video_url:
        return RenderState.COMPLETED
    state = parse_state(row.render_state)
    if state == RenderState.COMPLETED:
        logger.debug("Patch note %s is completed with no video_url; reading as idle", row.id)
        return RenderState.IDLE
    return state


def job_from_row(row: PatchNote) -> RenderJob:
    """Build the canonical RenderJob view of a patch note row.

    Engine handles are only surfaced while the job is active; an error only
    while failed.
    """
    state = effective_state(row)
    pipeline_status = parse_pipeline_status(row.pipeline_status)

    if state == RenderState.COMPLETED:
        return RenderJob(
            job_key=row.id,
            state=state,
            progress_percent=100,
            video_url=row.video_url,
            stage_label=row.processing_stage,
            pipeline_status=pipeline_status,
        )

    active = is_active(state)
    last_error = None
    if state == RenderState.FAILED:
        last_error = row.render_error or DEFAULT_FAILURE_MESSAGE

    return RenderJob(
        job_key=row.id,
        state=state,
        engine_job_id=row.video_render_id if active else None,
        engine_bucket=row.video_bucket_name if active else None,
        progress_percent=row.render_progress if state == RenderState.RENDERING else None,
        last_error=last_error,
        stage_label=row.processing_stage,
        pipeline_status=pipeline_status,
    )


class StatusCache:
    """Short-TTL read-through cache of RenderJob views.

    Never authoritative: entries expire after ``ttl`` seconds and are dropped
    on every successful write for the key.
    """

    def __init__(self, ttl: float = 2.0):
        self.ttl = ttl
        self._entries: dict[uuid.UUID, tuple[float, RenderJob]] = {}

    def get(self, job_key: uuid.UUID) -> Optional[RenderJob]:
        entry = self._entries.get(job_key)
        if entry is None:
            return None
        expires_at, job = entry
        if time.monotonic() >= expires_at:
            del self._entries[job_key]
            return None
        return job

    def put(self, job: RenderJob) -> None:
        if self.ttl <= 0:
            return
        now = time.monotonic()
        self._prune(now)
        self._entries[job.job_key] = (now + self.ttl, job)

    def _prune(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    def invalidate(self, job_key: uuid.UUID) -> None:
        self._entries.pop(job_key, None)

    def clear(self) -> None:
        self._entries.clear()


class StatusReader:
    """Reads render job state through the patch note store."""

    def __init__(self, store: PatchNoteStore, cache: Optional[StatusCache] = None):
        self.store = store
        self.cache = cache

    async def fetch(self, job_key: uuid.UUID) -> PatchNote:
        """Raw row, state column verbatim. Raises NotFound / StoreError."""
        return await self.store.get(job_key)

    async def read(self, job_key: uuid.UUID, *, use_cache: bool = False) -> RenderJob:
        """Load and normalize the render job for a patch note.

        Args:
            job_key: Patch note id
            use_cache: Serve a cached view if one is still fresh

        Raises:
            NotFound: Patch note does not exist
            StoreError: Database fault
        """
        if use_cache and self.cache is not None:
            cached = self.cache.get(job_key)
            if cached is not None:
                return cached

        row = await self.fetch(job_key)
        job = job_from_row(row)
        if self.cache is not None:
            self.cache.put(job)
        return job
