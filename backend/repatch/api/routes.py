"""API route handlers and Pydantic response schemas."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from repatch import __version__
from repatch.db.models import PatchNote
from repatch.orchestrator.controller import RenderController, get_controller
from repatch.orchestrator.status import job_from_row
from repatch.schemas.patch_note import PatchNoteFilters, RepoInfo, SummaryTemplate
from repatch.schemas.render import StatusView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Pydantic Schemas
# ============================================================================

class CreatePatchNoteRequest(BaseModel):
    """Request schema for POST /api/patch-notes."""
    repository: str
    branch: Optional[str] = None
    title: Optional[str] = None
    filters: Optional[PatchNoteFilters] = None
    template: Optional[SummaryTemplate] = None


class ProcessRequest(BaseModel):
    """Request schema for POST /api/patch-notes/{id}/process."""
    template: Optional[SummaryTemplate] = None


class AcceptedResponse(BaseModel):
    """Response schema for pipeline starts."""
    patch_note_id: str
    pipeline_status: str
    status_url: str


class RenderResponse(BaseModel):
    """Response schema for render starts."""
    patch_note_id: str
    render_id: str
    bucket_name: str
    status_url: str


class PatchNoteDetail(BaseModel):
    """Response schema for GET /api/patch-notes/{id}."""
    patch_note_id: str
    repo_name: str
    repo_url: Optional[str] = None
    branch: Optional[str] = None
    title: Optional[str] = None
    filters: Optional[dict] = None
    content: Optional[str] = None
    changes: Optional[dict] = None
    contributors: Optional[list] = None
    video_top_changes: Optional[list] = None
    video: StatusView
    created_at: str
    updated_at: str


class PatchNoteListItem(BaseModel):
    """Response schema for a patch note in the list view."""
    patch_note_id: str
    repo_name: str
    title: Optional[str] = None
    pipeline_status: str
    render_state: str
    created_at: str


# ============================================================================
# Helpers
# ============================================================================

def _status_url(job_key: uuid.UUID) -> str:
    return f"/api/patch-notes/{job_key}/video-status"


def _stored_inputs(note: PatchNote) -> tuple[RepoInfo, Optional[PatchNoteFilters]]:
    """Repository and filters a patch note was created with."""
    try:
        repo = RepoInfo.parse(note.repo_name, note.branch)
        filters = PatchNoteFilters.model_validate(note.filters) if note.filters else None
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=f"Stored patch note inputs are invalid: {e}")
    return repo, filters


def _to_detail(note: PatchNote) -> PatchNoteDetail:
    return PatchNoteDetail(
        patch_note_id=str(note.id),
        repo_name=note.repo_name,
        repo_url=note.repo_url,
        branch=note.branch,
        title=note.title,
        filters=note.filters,
        content=note.content,
        changes=note.changes,
        contributors=note.contributors,
        video_top_changes=note.video_top_changes,
        video=job_from_row(note).to_status(),
        created_at=note.created_at.isoformat(),
        updated_at=note.updated_at.isoformat(),
    )


# ============================================================================
# Endpoint Handlers
# ============================================================================

@router.post("/patch-notes", status_code=202, response_model=AcceptedResponse)
async def create_patch_note(
    request: CreatePatchNoteRequest,
    controller: RenderController = Depends(get_controller),
):
    """Create a patch note and generate its content in the background.

    Returns 202 Accepted with the patch note id and the status URL to poll.
    """
    try:
        repo = RepoInfo.parse(request.repository, request.branch)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    note = await controller.create_patch_note(repo, request.filters, request.title)

    # Start the pipeline AFTER the record is committed
    await controller.start_pipeline(note.id, repo, request.filters, request.template)

    return AcceptedResponse(
        patch_note_id=str(note.id),
        pipeline_status=note.pipeline_status,
        status_url=_status_url(note.id),
    )


@router.post("/patch-notes/{patch_note_id}/process", status_code=202, response_model=AcceptedResponse)
async def process_patch_note(
    patch_note_id: uuid.UUID,
    request: Optional[ProcessRequest] = None,
    controller: RenderController = Depends(get_controller),
):
    """Re-run the content pipeline for an existing patch note.

    Returns 409 while a render is queued or rendering.
    """
    note = await controller.store.get(patch_note_id)
    repo, filters = _stored_inputs(note)
    template = request.template if request else None
    await controller.start_pipeline(patch_note_id, repo, filters, template)
    logger.info(f"Reprocessing patch note {patch_note_id} ({repo.full_name})")

    return AcceptedResponse(
        patch_note_id=str(patch_note_id),
        pipeline_status="pending",
        status_url=_status_url(patch_note_id),
    )


@router.get("/patch-notes", response_model=list[PatchNoteListItem])
async def list_patch_notes(
    limit: int = 50,
    controller: RenderController = Depends(get_controller),
):
    """List patch notes, newest first."""
    notes = await controller.store.list_recent(limit)
    return [
        PatchNoteListItem(
            patch_note_id=str(n.id),
            repo_name=n.repo_name,
            title=n.title,
            pipeline_status=n.pipeline_status,
            render_state=job_from_row(n).state.value,
            created_at=n.created_at.isoformat(),
        )
        for n in notes
    ]


@router.get("/patch-notes/{patch_note_id}", response_model=PatchNoteDetail)
async def get_patch_note(
    patch_note_id: uuid.UUID,
    controller: RenderController = Depends(get_controller),
):
    """Full patch note with its stored render status (no engine poll)."""
    note = await controller.store.get(patch_note_id)
    return _to_detail(note)


@router.get("/patch-notes/{patch_note_id}/video-status", response_model=StatusView)
async def get_video_status(
    patch_note_id: uuid.UUID,
    controller: RenderController = Depends(get_controller),
):
    """Poll the render: advances an active job by one engine progress check."""
    return await controller.get_status(patch_note_id)


@router.post("/patch-notes/{patch_note_id}/render-video", response_model=RenderResponse)
async def render_video(
    patch_note_id: uuid.UUID,
    controller: RenderController = Depends(get_controller),
):
    """Start a render from the stored highlights.

    Returns 422 without highlights, 409 if a render cannot start from the
    current state, 502 if the render engine rejects the submission.
    """
    handle = await controller.start_render(patch_note_id)
    return RenderResponse(
        patch_note_id=str(patch_note_id),
        render_id=handle.job_id,
        bucket_name=handle.bucket,
        status_url=_status_url(patch_note_id),
    )


@router.post("/patch-notes/{patch_note_id}/regenerate-video", response_model=RenderResponse)
async def regenerate_video(
    patch_note_id: uuid.UUID,
    controller: RenderController = Depends(get_controller),
):
    """Discard the current video or failure and render again."""
    handle = await controller.regenerate_video(patch_note_id)
    return RenderResponse(
        patch_note_id=str(patch_note_id),
        render_id=handle.job_id,
        bucket_name=handle.bucket,
        status_url=_status_url(patch_note_id),
    )


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": __version__,
    }
