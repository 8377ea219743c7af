"""Render initiator: builds the render request from stored highlights and submits it."""

import logging
import uuid
from typing import Any, Optional

from repatch.config import settings
from repatch.db.models import PatchNote
from repatch.orchestrator.errors import (
    ConcurrentModification,
    EngineSubmissionFailed,
    InvalidTransition,
    MissingContent,
    RenderControllerError,
)
from repatch.orchestrator.state import RenderEvent, RenderState, can_apply
from repatch.orchestrator.status import StatusReader, effective_state
from repatch.orchestrator.transitions import TransitionExecutor
from repatch.schemas.render import RenderHandle, RenderRequest, TransitionFields
from repatch.services.render_client import RenderEngineClient

logger = logging.getLogger(__name__)

RELEASE_TAG = "Latest Update"
LANG_CODE = "en"
MAX_TOP_CHANGES = 3
UNRECORDED_HANDLE_MESSAGE = "Video render was submitted but its handle could not be recorded"


def build_all_changes(contexts: Optional[list]) -> list[str]:
    """Scrolling change list: first line of each commit message, then its summary."""
    all_changes = []
    for ctx in contexts or []:
        if not isinstance(ctx, dict):
            continue
        message = ctx.get("message") or ""
        title = message.split("\n")[0] or "Change"
        all_changes.append(f"{title}\n{ctx.get('context') or message}")
    return all_changes


def build_render_request(note: PatchNote) -> RenderRequest:
    """Assemble the render engine request for a patch note.

    Raises:
        MissingContent: The note has no video highlights yet
    """
    top_changes = [
        change for change in (note.video_top_changes or [])
        if isinstance(change, dict) and change.get("title")
    ]
    if not top_changes:
        raise MissingContent(note.id)

    cfg = settings.render_engine
    repo_slug = (note.repo_name or "repository").split("/")[-1]
    input_props: dict[str, Any] = {
        "repositorySlug": repo_slug,
        "releaseTag": RELEASE_TAG,
        "langCode": LANG_CODE,
        "topChanges": top_changes[:MAX_TOP_CHANGES],
        "allChanges": build_all_changes(note.ai_detailed_contexts),
    }
    return RenderRequest(
        function_name=cfg.function_name,
        serve_url=cfg.serve_url,
        composition=cfg.composition,
        codec=cfg.codec,
        image_format=cfg.image_format,
        privacy=cfg.privacy,
        max_retries=cfg.max_retries,
        input_props=input_props,
    )


class RenderInitiator:
    """Submits renders and records the engine handle.

    After a submission attempt the job is deterministically either queued
    (with a handle) or failed (with the submission error).
    """

    def __init__(
        self,
        reader: StatusReader,
        executor: TransitionExecutor,
        engine: RenderEngineClient,
    ):
        self.reader = reader
        self.executor = executor
        self.engine = engine

    async def start(self, job_key: uuid.UUID) -> RenderHandle:
        """Start a render for a patch note.

        Raises:
            NotFound: Patch note does not exist
            MissingContent: No highlights; nothing submitted or written
            InvalidTransition: A render cannot start from the current state
            EngineSubmissionFailed: The engine rejected the render; the job
                is recorded as failed
            ConcurrentModification: Another writer moved the job meanwhile;
                a job left idle by the lost write is recorded as failed
        """
        note = await self.reader.fetch(job_key)
        request = build_render_request(note)

        current = effective_state(note)
        if not can_apply(current, RenderEvent.START):
            logger.warning("Render for %s cannot start from %s", job_key, current.value)
            raise InvalidTransition(current.value, RenderEvent.START.value)

        logger.info(
            "Submitting render for %s: %d highlights, %d scrolling changes",
            job_key,
            len(request.input_props["topChanges"]),
            len(request.input_props["allChanges"]),
        )
        try:
            handle = await self.engine.submit(request)
        except EngineSubmissionFailed as e:
            message = f"Video render failed to start: {e}"
            logger.error("Render submission failed for %s: %s", job_key, e)
            try:
                await self.executor.transition(
                    job_key, RenderEvent.FAIL, TransitionFields(message=message)
                )
            except RenderControllerError as record_error:
                logger.warning(
                    "Could not record submission failure for %s: %s", job_key, record_error
                )
            raise

        try:
            await self.executor.transition(
                job_key,
                RenderEvent.START,
                TransitionFields(engine_job_id=handle.job_id, engine_bucket=handle.bucket),
            )
        except (ConcurrentModification, InvalidTransition) as e:
            logger.error(
                "Render %s submitted for %s but its handle was not recorded: %s",
                handle.job_id, job_key, e,
            )
            await self._fail_if_idle(job_key)
            raise

        logger.info("Render queued for %s: render_id=%s", job_key, handle.job_id)
        return handle

    async def _fail_if_idle(self, job_key: uuid.UUID) -> None:
        """Record a failure when a lost start left the job idle.

        A job another writer moved on (queued, rendering or terminal) is left
        as that writer recorded it.
        """
        job = await self.reader.read(job_key)
        if job.state != RenderState.IDLE:
            return
        try:
            await self.executor.transition(
                job_key, RenderEvent.FAIL, TransitionFields(message=UNRECORDED_HANDLE_MESSAGE)
            )
        except RenderControllerError as e:
            logger.warning("Could not record unrecorded handle for %s: %s", job_key, e)

    async def restart(self, job_key: uuid.UUID) -> RenderHandle:
        """Reset a finished render back to idle and start a new one.

        Highlights are checked first so a note without them keeps its video.
        """
        build_render_request(await self.reader.fetch(job_key))
        await self.executor.reset(job_key)
        return await self.start(job_key)
