"""Progress poller: maps render engine progress onto render state transitions."""

import logging
import uuid
from typing import Optional

from repatch.config import settings
from repatch.orchestrator.errors import EngineFatalError
from repatch.orchestrator.state import RenderEvent, RenderState, is_terminal
from repatch.orchestrator.status import StatusReader
from repatch.orchestrator.transitions import TransitionExecutor, clamp_percent
from repatch.schemas.render import RenderJob, TransitionFields
from repatch.services.render_client import RenderEngineClient

logger = logging.getLogger(__name__)

MISSING_HANDLE_MESSAGE = "Render job has no engine handle; start the render again"


def video_url_for(
    output_ref: str,
    bucket: str,
    region: Optional[str] = None,
    template: Optional[str] = None,
) -> str:
    """Final video URL for an engine output reference.

    Absolute http(s) references pass through unchanged; anything else is a
    key inside the render bucket.
    """
    if output_ref.startswith(("http://", "https://")):
        return output_ref
    cfg = settings.render_engine
    return (template or cfg.output_url_template).format(
        bucket=bucket,
        region=region or cfg.region,
        key=output_ref.lstrip("/"),
    )


class ProgressPoller:
    """Idempotent poll of one render job. Safe to call on a fixed interval."""

    def __init__(
        self,
        reader: StatusReader,
        executor: TransitionExecutor,
        engine: RenderEngineClient,
    ):
        self.reader = reader
        self.executor = executor
        self.engine = engine

    async def poll(self, job_key: uuid.UUID) -> RenderJob:
        """Poll the render engine once and record what it reports.

        Terminal and idle jobs are returned as stored without contacting the
        engine.

        Raises:
            NotFound: Patch note does not exist
            RenderEngineError: The engine could not be reached; nothing written
            ConcurrentModification: Another poller recorded progress first
            InvalidTransition: Another poller finished the render while this
                one waited on the engine
        """
        job = await self.reader.read(job_key)
        if is_terminal(job.state) or job.state == RenderState.IDLE:
            return job

        if not job.has_engine_handle:
            logger.error("Active render %s has no engine handle", job_key)
            return job.model_copy(
                update={
                    "state": RenderState.FAILED,
                    "progress_percent": None,
                    "last_error": MISSING_HANDLE_MESSAGE,
                }
            )

        try:
            progress = await self.engine.progress(job.engine_job_id, job.engine_bucket)
        except EngineFatalError as e:
            logger.error("Render %s is lost: %s", job.engine_job_id, e)
            return await self.executor.transition(
                job_key, RenderEvent.FAIL, TransitionFields(message=str(e))
            )

        if progress.fatal_error:
            logger.error("Render %s reported a fatal error: %s", job.engine_job_id, progress.fatal_error)
            return await self.executor.transition(
                job_key, RenderEvent.FAIL, TransitionFields(message=progress.fatal_error)
            )

        if progress.done and progress.output_ref:
            url = video_url_for(progress.output_ref, job.engine_bucket)
            logger.info("Render %s complete: %s", job.engine_job_id, url)
            return await self.executor.transition(
                job_key, RenderEvent.COMPLETE, TransitionFields(video_url=url)
            )

        percent = clamp_percent(progress.fraction * 100)
        if job.state == RenderState.QUEUED:
            return await self.executor.transition(
                job_key, RenderEvent.PROGRESS, TransitionFields(progress_percent=percent)
            )
        return await self.executor.refresh_progress(job_key, percent)
