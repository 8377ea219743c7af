"""Content pipeline orchestrator with per-stage timing and graceful degradation.

Runs the patch note stages in strict order:
1. Fetch stats: fatal on failure (recorded as a render fail)
2. Summarize commits: falls back to boilerplate content on failure
3. Assemble content: persists content, changes and contributors
4. Derive highlights: failure or nothing found means no video
5. Start the render when highlights exist

Every stage writes its display label before it runs. A PipelineRun row
records per-stage timings and the outcome.
"""

import logging
import time
import uuid
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from repatch.config import settings
from repatch.db.store import PatchNoteStore
from repatch.orchestrator.errors import RenderControllerError
from repatch.orchestrator.initiator import RenderInitiator
from repatch.orchestrator.state import PipelineStatus, RenderEvent, RenderState
from repatch.orchestrator.transitions import TransitionExecutor
from repatch.pipeline.content import boilerplate_content
from repatch.pipeline.highlights import derive_highlights
from repatch.pipeline.stats import fetch_repo_stats
from repatch.pipeline.summarize import generate_changelog
from repatch.schemas.patch_note import (
    DetailedContext,
    PatchNoteFilters,
    RepoInfo,
    RepoStats,
    SummaryTemplate,
)
from repatch.schemas.render import TransitionFields
from repatch.services.github_client import GitHubClient
from repatch.services.summarizer import ChangelogSummarizer

logger = logging.getLogger(__name__)

STAGE_LABELS = {
    PipelineStatus.FETCHING_STATS: "Fetching repository statistics...",
    PipelineStatus.ANALYZING_COMMITS: "Analyzing commits with AI...",
    PipelineStatus.GENERATING_CONTENT: "Assembling patch notes...",
    PipelineStatus.EXTRACTING_HIGHLIGHTS: "Extracting video highlights...",
}
LABEL_STARTING_RENDER = "Starting video render..."
LABEL_DONE_NO_VIDEO = "Patch notes ready"


class PipelineResult(BaseModel):
    """Outcome of one orchestrator run."""

    job_key: uuid.UUID
    pipeline_status: PipelineStatus
    render_state: Optional[RenderState] = None
    used_fallback: bool = False
    highlights: int = 0
    engine_job_id: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0


class PipelineOrchestrator:
    """Sequences content generation and hands off to the render initiator."""

    def __init__(
        self,
        store: PatchNoteStore,
        executor: TransitionExecutor,
        initiator: RenderInitiator,
        github: GitHubClient,
        summarizer: ChangelogSummarizer,
    ):
        self.store = store
        self.executor = executor
        self.initiator = initiator
        self.github = github
        self.summarizer = summarizer

    async def _announce(
        self,
        job_key: uuid.UUID,
        label: str,
        status: PipelineStatus,
        progress_callback: Optional[Callable[[str], None]],
    ) -> None:
        logger.info("Pipeline %s: %s", job_key, label)
        if progress_callback:
            progress_callback(label)
        await self.executor.set_stage_label(job_key, label, status)

    async def _record_failure(self, job_key: uuid.UUID, message: str) -> None:
        """Terminal fail transition plus failed pipeline status, best effort on the render side."""
        try:
            await self.executor.transition(
                job_key, RenderEvent.FAIL, TransitionFields(message=message, stage_label=message)
            )
        except RenderControllerError as e:
            logger.warning("Could not record render failure for %s: %s", job_key, e)
        await self.executor.set_stage_label(job_key, message, PipelineStatus.FAILED)

    async def run(
        self,
        job_key: uuid.UUID,
        repo: RepoInfo,
        filters: Optional[PatchNoteFilters] = None,
        template: Optional[SummaryTemplate] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> PipelineResult:
        """Execute the content pipeline for one patch note.

        Args:
            job_key: Patch note id
            repo: Repository to summarize
            filters: Commit window; defaults to the last week
            template: Prompt overrides for the summarizer
            progress_callback: Receives each stage label (CLI display)

        Returns:
            PipelineResult describing how far the run got

        Raises:
            NotFound: Patch note does not exist
            StoreError: Database fault; recorded as failed where possible
        """
        logger.info("Starting pipeline for %s (%s)", job_key, repo.full_name)
        run_id = await self.store.create_run(job_key)
        step_log: Dict[str, float] = {}
        pipeline_start = time.monotonic()
        result = PipelineResult(job_key=job_key, pipeline_status=PipelineStatus.FAILED)

        try:
            # Stage 1: stats
            step_start = time.monotonic()
            await self._announce(
                job_key, STAGE_LABELS[PipelineStatus.FETCHING_STATS],
                PipelineStatus.FETCHING_STATS, progress_callback,
            )
            try:
                commits, stats = await fetch_repo_stats(self.github, repo, filters)
            except Exception as e:
                message = f"Failed to fetch repository statistics: {e}"
                logger.error("Pipeline %s: %s", job_key, message)
                await self._record_failure(job_key, message)
                result.error = message
                result.render_state = RenderState.FAILED
                return result
            step_log["fetch_stats"] = time.monotonic() - step_start

            # Stage 2: AI summaries, boilerplate fallback
            step_start = time.monotonic()
            await self._announce(
                job_key, STAGE_LABELS[PipelineStatus.ANALYZING_COMMITS],
                PipelineStatus.ANALYZING_COMMITS, progress_callback,
            )
            content, contexts = await self._summarize(job_key, repo, filters, commits, stats, template)
            result.used_fallback = not contexts
            step_log["summarize"] = time.monotonic() - step_start

            # Stage 3: persist content
            step_start = time.monotonic()
            await self._announce(
                job_key, STAGE_LABELS[PipelineStatus.GENERATING_CONTENT],
                PipelineStatus.GENERATING_CONTENT, progress_callback,
            )
            await self.executor.update_content(
                job_key,
                {
                    "content": content,
                    "changes": {"added": stats.additions, "modified": 0, "removed": stats.deletions},
                    "contributors": stats.contributors,
                    "ai_detailed_contexts": [c.model_dump() for c in contexts],
                },
            )
            step_log["assemble"] = time.monotonic() - step_start

            # Stage 4: highlights
            step_start = time.monotonic()
            await self._announce(
                job_key, STAGE_LABELS[PipelineStatus.EXTRACTING_HIGHLIGHTS],
                PipelineStatus.EXTRACTING_HIGHLIGHTS, progress_callback,
            )
            try:
                highlights = await derive_highlights(
                    self.summarizer, content, repo.full_name, settings.pipeline.max_highlights
                )
            except Exception as e:
                logger.warning("Pipeline %s: highlight extraction failed, skipping video: %s", job_key, e)
                highlights = []
            if highlights:
                await self.executor.update_content(job_key, {"video_top_changes": highlights})
            result.highlights = len(highlights)
            step_log["highlights"] = time.monotonic() - step_start

            # Stage 5: render hand-off
            result.pipeline_status = PipelineStatus.COMPLETED
            if not highlights:
                await self._announce(job_key, LABEL_DONE_NO_VIDEO, PipelineStatus.COMPLETED, progress_callback)
                result.render_state = RenderState.IDLE
                return result

            step_start = time.monotonic()
            await self._announce(job_key, LABEL_STARTING_RENDER, PipelineStatus.COMPLETED, progress_callback)
            try:
                handle = await self.initiator.start(job_key)
                result.engine_job_id = handle.job_id
                result.render_state = RenderState.QUEUED
            except RenderControllerError as e:
                # Content stays intact; the render side carries the failure
                logger.error("Pipeline %s: render did not start: %s", job_key, e)
                result.render_state = RenderState.FAILED
                result.error = str(e)
            step_log["render_start"] = time.monotonic() - step_start
            return result

        except Exception as e:
            logger.error(f"Pipeline {job_key} failed: {type(e).__name__}: {e}")
            result.error = f"{type(e).__name__}: {e}"
            try:
                await self._record_failure(job_key, "Patch note generation failed")
            except RenderControllerError as record_error:
                logger.error("Could not record pipeline failure for %s: %s", job_key, record_error)
            raise

        finally:
            result.duration_seconds = time.monotonic() - pipeline_start
            outcome = result.pipeline_status.value
            try:
                await self.store.finish_run(run_id, result.duration_seconds, step_log, outcome)
            except RenderControllerError as e:
                logger.warning("Could not finish pipeline run %s: %s", run_id, e)
            logger.info(
                "Pipeline %s finished in %.2fs: %s (render=%s)",
                job_key, result.duration_seconds, outcome,
                result.render_state.value if result.render_state else "unchanged",
            )

    async def _summarize(
        self,
        job_key: uuid.UUID,
        repo: RepoInfo,
        filters: Optional[PatchNoteFilters],
        commits: list,
        stats: RepoStats,
        template: Optional[SummaryTemplate],
    ) -> tuple[str, list[DetailedContext]]:
        """AI changelog, or the deterministic boilerplate if there is nothing to summarize or AI fails."""
        if commits:
            try:
                return await generate_changelog(
                    self.github, self.summarizer, repo, filters, commits, stats, template
                )
            except Exception as e:
                logger.warning("Pipeline %s: AI summarization failed, using boilerplate: %s", job_key, e)
        content = boilerplate_content(
            repo.full_name, filters, stats, settings.pipeline.recent_commit_limit
        )
        return content, []
