"""Render controller: the single entry point callers use for patch note jobs.

Wires the store, reader, executor, initiator, poller and content pipeline
together. API routes, CLI commands and background workers all go through
one RenderController.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from repatch.config import settings
from repatch.db.models import PatchNote
from repatch.db.store import PatchNoteStore
from repatch.orchestrator.errors import (
    ConcurrentModification,
    InvalidTransition,
    RenderControllerError,
    RenderEngineError,
)
from repatch.orchestrator.initiator import RenderInitiator
from repatch.orchestrator.pipeline import PipelineOrchestrator, PipelineResult
from repatch.orchestrator.poller import ProgressPoller
from repatch.orchestrator.state import PipelineStatus, RenderEvent, is_active
from repatch.orchestrator.status import StatusCache, StatusReader
from repatch.orchestrator.transitions import TransitionExecutor
from repatch.schemas.patch_note import PatchNoteFilters, RepoInfo, SummaryTemplate
from repatch.schemas.render import RenderHandle, RenderJob, StatusView, TransitionFields
from repatch.services.github_client import GitHubClient, get_github_client
from repatch.services.render_client import RenderEngineClient, get_render_client
from repatch.services.summarizer import ChangelogSummarizer

logger = logging.getLogger(__name__)

STALE_RENDER_MESSAGE = "Video render timed out"


class RenderController:
    """Facade over the render job lifecycle and the content pipeline."""

    def __init__(
        self,
        store: Optional[PatchNoteStore] = None,
        engine: Optional[RenderEngineClient] = None,
        github: Optional[GitHubClient] = None,
        summarizer: Optional[ChangelogSummarizer] = None,
        cache: Optional[StatusCache] = None,
    ):
        self.store = store or PatchNoteStore()
        self.cache = cache if cache is not None else StatusCache(settings.pipeline.status_cache_ttl)
        self.reader = StatusReader(self.store, self.cache)
        self.executor = TransitionExecutor(self.store, self.reader, self.cache)
        self._engine = engine
        self._github = github
        self._summarizer = summarizer
        self._tasks: set[asyncio.Task] = set()

    @property
    def engine(self) -> RenderEngineClient:
        if self._engine is None:
            self._engine = get_render_client()
        return self._engine

    @property
    def github(self) -> GitHubClient:
        if self._github is None:
            self._github = get_github_client()
        return self._github

    @property
    def summarizer(self) -> ChangelogSummarizer:
        if self._summarizer is None:
            self._summarizer = ChangelogSummarizer()
        return self._summarizer

    @property
    def initiator(self) -> RenderInitiator:
        return RenderInitiator(self.reader, self.executor, self.engine)

    @property
    def poller(self) -> ProgressPoller:
        return ProgressPoller(self.reader, self.executor, self.engine)

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            self.store, self.executor, self.initiator, self.github, self.summarizer
        )

    async def create_patch_note(
        self,
        repo: RepoInfo,
        filters: Optional[PatchNoteFilters] = None,
        title: Optional[str] = None,
    ) -> PatchNote:
        """Insert a pending patch note for a repository."""
        note = await self.store.create(
            repo_name=repo.full_name,
            repo_url=repo.url,
            branch=repo.branch,
            title=title or f"{repo.full_name} update",
            filters=filters.model_dump(mode="json") if filters else None,
            pipeline_status=PipelineStatus.PENDING.value,
            processing_stage="Queued for processing",
        )
        logger.info(f"Created patch note {note.id} for {repo.full_name}")
        return note

    async def prepare_pipeline(self, job_key: uuid.UUID) -> None:
        """Make a patch note ready for a (re)run of the content pipeline.

        A finished render is reset to idle; an in-flight one is rejected.

        Raises:
            NotFound: Patch note does not exist
            InvalidTransition: A render is queued or rendering
        """
        job = await self.reader.read(job_key)
        if is_active(job.state):
            raise InvalidTransition(job.state.value, "process")
        await self.executor.reset(job_key)
        await self.executor.set_stage_label(job_key, "Queued for processing", PipelineStatus.PENDING)

    async def run_pipeline(
        self,
        job_key: uuid.UUID,
        repo: RepoInfo,
        filters: Optional[PatchNoteFilters] = None,
        template: Optional[SummaryTemplate] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> PipelineResult:
        """Run the content pipeline to completion in the caller's task."""
        return await self.orchestrator.run(job_key, repo, filters, template, progress_callback)

    async def start_pipeline(
        self,
        job_key: uuid.UUID,
        repo: RepoInfo,
        filters: Optional[PatchNoteFilters] = None,
        template: Optional[SummaryTemplate] = None,
    ) -> asyncio.Task:
        """Prepare the record and run the pipeline in a background task.

        Returns as soon as the task is scheduled; callers poll get_status.
        """
        await self.prepare_pipeline(job_key)
        task = asyncio.create_task(self._run_logged(job_key, repo, filters, template))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_logged(
        self,
        job_key: uuid.UUID,
        repo: RepoInfo,
        filters: Optional[PatchNoteFilters],
        template: Optional[SummaryTemplate],
    ) -> Optional[PipelineResult]:
        try:
            result = await self.run_pipeline(job_key, repo, filters, template)
        except Exception as e:
            # Failure already persisted by the orchestrator
            logger.error(f"Background pipeline failed for {job_key}: {type(e).__name__}: {e}")
            return None
        logger.info(
            f"Background pipeline for {job_key} finished: {result.pipeline_status.value} "
            f"({result.duration_seconds:.1f}s)"
        )
        return result

    async def start_render(self, job_key: uuid.UUID) -> RenderHandle:
        """Submit a render for a patch note whose highlights are ready."""
        return await self.initiator.start(job_key)

    async def regenerate_video(self, job_key: uuid.UUID) -> RenderHandle:
        """Discard the current video (or failure) and render again."""
        return await self.initiator.restart(job_key)

    async def poll(self, job_key: uuid.UUID) -> RenderJob:
        """One engine poll for an active render; see ProgressPoller.poll."""
        return await self.poller.poll(job_key)

    async def get_status(self, job_key: uuid.UUID) -> StatusView:
        """Caller-visible status, advancing an active render by one poll.

        A lost race or an unreachable engine falls back to the stored state;
        the next call polls again. A race is lost either on the write itself
        or, when another poller already finished the render, on the
        transition check.

        Raises:
            NotFound: Patch note does not exist
        """
        try:
            job = await self.poller.poll(job_key)
        except (ConcurrentModification, InvalidTransition) as e:
            logger.debug("Concurrent poll for %s (%s); reading stored state", job_key, e)
            job = await self.reader.read(job_key)
        except RenderEngineError as e:
            logger.warning("Render engine unavailable while polling %s: %s", job_key, e)
            job = await self.reader.read(job_key)
        return job.to_status()

    async def read(self, job_key: uuid.UUID) -> RenderJob:
        """Stored render job without contacting the engine (cached briefly)."""
        return await self.reader.read(job_key, use_cache=True)

    async def fail_stale(self, threshold_seconds: Optional[int] = None) -> list[uuid.UUID]:
        """Fail renders that have not moved for ``threshold_seconds``.

        Returns:
            Keys of the jobs that were failed
        """
        threshold = threshold_seconds or settings.render_engine.stale_after_seconds
        cutoff = datetime.utcnow() - timedelta(seconds=threshold)
        failed = []
        for note in await self.store.list_active(updated_before=cutoff):
            try:
                await self.executor.transition(
                    note.id, RenderEvent.FAIL, TransitionFields(message=STALE_RENDER_MESSAGE)
                )
            except RenderControllerError as e:
                logger.warning("Could not fail stale render %s: %s", note.id, e)
                continue
            logger.warning(f"Failed stale render {note.id} (no update since {note.updated_at})")
            failed.append(note.id)
        return failed

    async def wait_for_background(self) -> None:
        """Wait for scheduled pipeline tasks (tests and shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_controller: Optional[RenderController] = None


def get_controller() -> RenderController:
    """Return the process-wide RenderController."""
    global _controller
    if _controller is None:
        _controller = RenderController()
    return _controller
