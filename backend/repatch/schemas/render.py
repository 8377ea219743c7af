"""Pydantic models for render jobs and the render engine contract."""

import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field

from repatch.orchestrator.state import PipelineStatus, RenderState


class RenderJob(BaseModel):
    """Render job view of one patch note row."""

    job_key: uuid.UUID
    state: RenderState
    engine_job_id: Optional[str] = None
    engine_bucket: Optional[str] = None
    progress_percent: Optional[int] = None
    video_url: Optional[str] = None
    last_error: Optional[str] = None
    stage_label: Optional[str] = None
    pipeline_status: PipelineStatus = PipelineStatus.PENDING

    @property
    def has_engine_handle(self) -> bool:
        return bool(self.engine_job_id and self.engine_bucket)

    def to_status(self) -> "StatusView":
        """Project onto the caller-visible status shape."""
        if self.state == RenderState.COMPLETED:
            progress = 100
        elif self.state == RenderState.RENDERING:
            progress = self.progress_percent or 0
        else:
            progress = 0
        return StatusView(
            state=self.state,
            progress_percent=progress,
            video_url=self.video_url if self.state == RenderState.COMPLETED else None,
            error=self.last_error if self.state == RenderState.FAILED else None,
            pipeline_status=self.pipeline_status,
            stage=self.stage_label,
        )


class StatusView(BaseModel):
    """What status polling returns to the rest of the application."""

    state: RenderState
    progress_percent: int = 0
    video_url: Optional[str] = None
    error: Optional[str] = None
    pipeline_status: PipelineStatus = PipelineStatus.PENDING
    stage: Optional[str] = None


class TransitionFields(BaseModel):
    """Event payload for a render state transition."""

    engine_job_id: Optional[str] = None
    engine_bucket: Optional[str] = None
    progress_percent: Optional[float] = None
    video_url: Optional[str] = None
    message: Optional[str] = None
    stage_label: Optional[str] = None


class RenderHandle(BaseModel):
    """Opaque (job id, bucket) pair returned by the render engine."""

    job_id: str
    bucket: str


class RenderProgress(BaseModel):
    """Normalized render engine progress report."""

    fraction: float = Field(default=0.0, ge=0.0, le=1.0)
    done: bool = False
    output_ref: Optional[str] = None
    fatal_error: Optional[str] = None


class RenderRequest(BaseModel):
    """Render engine submission payload."""

    function_name: str
    serve_url: str
    composition: str
    codec: str = "h264"
    image_format: str = "jpeg"
    privacy: str = "public"
    max_retries: int = 1
    input_props: dict[str, Any]
