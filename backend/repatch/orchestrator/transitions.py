"""Transition executor: applies render state transitions with compare-and-swap writes.

Every write here reads the owner row, computes the new field set, and
updates it conditioned on render_state still holding the value that was
read. A write that matches no row means another writer got there first;
it is reported as ConcurrentModification and never retried at this layer.
"""

import logging
import uuid
from typing import Any, Mapping, Optional

from repatch.db.models import PatchNote
from repatch.db.store import PatchNoteStore
from repatch.orchestrator.errors import ConcurrentModification, InvalidTransition, NotFound
from repatch.orchestrator.state import (
    RESETTABLE_STATES,
    PipelineStatus,
    RenderEvent,
    RenderState,
    next_state,
)
from repatch.orchestrator.status import (
    DEFAULT_FAILURE_MESSAGE,
    StatusCache,
    StatusReader,
    effective_state,
    job_from_row,
)
from repatch.schemas.render import RenderJob, TransitionFields

logger = logging.getLogger(__name__)

# Columns update_content may write; render columns are off limits
CONTENT_FIELDS = {
    "title",
    "content",
    "changes",
    "contributors",
    "ai_detailed_contexts",
    "video_top_changes",
}

STAGE_QUEUED = "Video render queued"
STAGE_COMPLETED = "Video ready"


def clamp_percent(value: float) -> int:
    """Integer percent in [0, 100]."""
    return max(0, min(100, int(round(value))))


def rendering_label(percent: int) -> str:
    return f"Rendering video... {percent}%"


def compute_fields(
    job_key: uuid.UUID,
    event: RenderEvent,
    target: RenderState,
    fields: TransitionFields,
) -> dict[str, Any]:
    """Column values written by one transition.

    Raises:
        ValueError: The event payload is missing a required field
    """
    values: dict[str, Any] = {"render_state": target.value}

    if event == RenderEvent.START:
        if not (fields.engine_job_id and fields.engine_bucket):
            raise ValueError(f"start transition for {job_key} requires an engine handle")
        values.update(
            video_render_id=fields.engine_job_id,
            video_bucket_name=fields.engine_bucket,
            render_progress=0,
            video_url=None,
            render_error=None,
            processing_stage=fields.stage_label or STAGE_QUEUED,
        )

    elif event == RenderEvent.PROGRESS:
        percent = clamp_percent(fields.progress_percent or 0)
        values.update(
            render_progress=percent,
            processing_stage=fields.stage_label or rendering_label(percent),
        )

    elif event == RenderEvent.COMPLETE:
        if not fields.video_url:
            raise ValueError(f"complete transition for {job_key} requires a video URL")
        values.update(
            video_url=fields.video_url,
            video_render_id=None,
            video_bucket_name=None,
            render_error=None,
            render_progress=100,
            processing_stage=fields.stage_label or STAGE_COMPLETED,
        )

    elif event == RenderEvent.FAIL:
        message = (fields.message or "").strip() or DEFAULT_FAILURE_MESSAGE
        values.update(
            render_error=message,
            video_render_id=None,
            video_bucket_name=None,
            render_progress=None,
            video_url=None,
            processing_stage=fields.stage_label or DEFAULT_FAILURE_MESSAGE,
        )

    return values


class TransitionExecutor:
    """Single writer of render job state."""

    def __init__(
        self,
        store: PatchNoteStore,
        reader: Optional[StatusReader] = None,
        cache: Optional[StatusCache] = None,
    ):
        self.store = store
        self.reader = reader or StatusReader(store, cache)
        self.cache = cache if cache is not None else self.reader.cache

    async def transition(
        self,
        job_key: uuid.UUID,
        event: RenderEvent,
        fields: Optional[TransitionFields] = None,
    ) -> RenderJob:
        """Apply one event to a render job.

        Args:
            job_key: Patch note id
            event: Event to apply
            fields: Event payload (handle for start, percent for progress,
                URL for complete, message for fail)

        Returns:
            The job as written

        Raises:
            NotFound: Patch note does not exist
            InvalidTransition: (state, event) is not legal; nothing is written
            ConcurrentModification: render_state changed after it was read
        """
        fields = fields or TransitionFields()
        row = await self.reader.fetch(job_key)
        observed = row.render_state
        current = effective_state(row)

        try:
            target = next_state(current, event)
        except InvalidTransition:
            logger.warning(
                "Rejected render transition %s from %s for %s", event.value, current.value, job_key
            )
            raise

        values = compute_fields(job_key, event, target, fields)
        written = await self._write(job_key, values, observed)
        logger.info(
            "Render state transition: %s -> %s (%s, event=%s)",
            current.value, target.value, job_key, event.value,
        )
        return job_from_row(written)

    async def refresh_progress(self, job_key: uuid.UUID, percent: float) -> RenderJob:
        """Same-state progress update for a job already rendering.

        Not a formal transition: the state column is never changed, only
        guarded.

        Raises:
            InvalidTransition: The job is not rendering
            ConcurrentModification: render_state changed after it was read
        """
        row = await self.reader.fetch(job_key)
        observed = row.render_state
        current = effective_state(row)
        if current != RenderState.RENDERING:
            raise InvalidTransition(current.value, RenderEvent.PROGRESS.value)

        value = clamp_percent(percent)
        written = await self._write(
            job_key,
            {"render_progress": value, "processing_stage": rendering_label(value)},
            observed,
        )
        logger.debug("Render progress for %s: %d%%", job_key, value)
        return job_from_row(written)

    async def reset(self, job_key: uuid.UUID) -> RenderJob:
        """Reset a job to idle ahead of a re-render.

        Clears the video URL, engine handle, error and progress together
        with the state.

        Raises:
            InvalidTransition: The job has a render in flight
            ConcurrentModification: render_state changed after it was read
        """
        row = await self.reader.fetch(job_key)
        observed = row.render_state
        current = effective_state(row)
        if current not in RESETTABLE_STATES:
            raise InvalidTransition(current.value, "reset")

        written = await self._write(
            job_key,
            {
                "render_state": RenderState.IDLE.value,
                "video_url": None,
                "video_render_id": None,
                "video_bucket_name": None,
                "render_error": None,
                "render_progress": None,
            },
            observed,
        )
        logger.info("Render state reset: %s -> idle (%s)", current.value, job_key)
        return job_from_row(written)

    async def set_stage_label(
        self,
        job_key: uuid.UUID,
        label: Optional[str],
        pipeline_status: Optional[PipelineStatus] = None,
    ) -> None:
        """Write the display label (and optionally the pipeline status).

        Unconditional: neither column takes part in render control flow.
        """
        values: dict[str, Any] = {"processing_stage": label}
        if pipeline_status is not None:
            values["pipeline_status"] = pipeline_status.value
        written = await self.store.update(job_key, values)
        if written is None:
            raise NotFound(job_key)
        self._invalidate(job_key)

    async def update_content(self, job_key: uuid.UUID, fields: Mapping[str, Any]) -> RenderJob:
        """Persist generated content, conditioned on the current render state.

        Raises:
            ValueError: A field outside the content columns was given
            ConcurrentModification: render_state changed after it was read
        """
        unknown = set(fields) - CONTENT_FIELDS
        if unknown:
            raise ValueError(f"Not content fields: {sorted(unknown)}")

        row = await self.reader.fetch(job_key)
        written = await self._write(job_key, dict(fields), row.render_state)
        return job_from_row(written)

    async def _write(
        self, job_key: uuid.UUID, values: Mapping[str, Any], observed: Optional[str]
    ) -> PatchNote:
        written = await self.store.update(job_key, values, expect={"render_state": observed})
        if written is None:
            logger.warning(
                "Lost concurrent update on %s (expected render_state=%r)", job_key, observed
            )
            raise ConcurrentModification(job_key, observed)
        self._invalidate(job_key)
        return written

    def _invalidate(self, job_key: uuid.UUID) -> None:
        if self.cache is not None:
            self.cache.invalidate(job_key)
