"""Content pipeline: stage ordering, graceful degradation and render hand-off."""

import pytest

from repatch.orchestrator.pipeline import LABEL_DONE_NO_VIDEO, STAGE_LABELS, LABEL_STARTING_RENDER
from repatch.orchestrator.state import PipelineStatus, RenderState
from repatch.schemas.patch_note import ChangelogOutput, CommitSummaryOutput, HighlightsOutput


async def _run(controller, repo, labels=None):
    note = await controller.create_patch_note(repo)
    result = await controller.run_pipeline(
        note.id, repo, progress_callback=labels.append if labels is not None else None
    )
    return note.id, result


@pytest.mark.asyncio
async def test_full_run_queues_render(controller, store, engine, adapter, repo):
    labels = []
    job_key, result = await _run(controller, repo, labels)

    assert result.pipeline_status == PipelineStatus.COMPLETED
    assert result.render_state == RenderState.QUEUED
    assert result.used_fallback is False
    assert result.highlights == 3
    assert result.engine_job_id == "render-1"
    assert labels == [
        STAGE_LABELS[PipelineStatus.FETCHING_STATS],
        STAGE_LABELS[PipelineStatus.ANALYZING_COMMITS],
        STAGE_LABELS[PipelineStatus.GENERATING_CONTENT],
        STAGE_LABELS[PipelineStatus.EXTRACTING_HIGHLIGHTS],
        LABEL_STARTING_RENDER,
    ]

    row = await store.get(job_key)
    assert row.pipeline_status == "completed"
    assert row.render_state == "queued"
    assert row.content.startswith("# Weekly Update")
    assert row.changes == {"added": 20, "modified": 0, "removed": 4}
    assert row.contributors == ["@octocat", "@hubot"]
    assert len(row.ai_detailed_contexts) == 2
    assert [h["title"] for h in row.video_top_changes] == ["Faster builds", "Dark mode", "Fewer crashes"]

    request = engine.submissions[0]
    assert len(request.input_props["topChanges"]) == 3
    assert len(request.input_props["allChanges"]) == 2


@pytest.mark.asyncio
async def test_stats_failure_fails_job_and_keeps_content(controller, store, engine, github, repo):
    github.fail_listing()
    job_key, result = await _run(controller, repo)

    assert result.pipeline_status == PipelineStatus.FAILED
    assert result.render_state == RenderState.FAILED
    assert result.error.startswith("Failed to fetch repository statistics")

    status = await controller.get_status(job_key)
    assert status.state == RenderState.FAILED
    assert status.error.startswith("Failed to fetch repository statistics")
    assert status.pipeline_status == PipelineStatus.FAILED

    row = await store.get(job_key)
    assert row.content is None
    assert row.video_top_changes is None
    assert engine.submissions == []


@pytest.mark.asyncio
async def test_ai_failure_falls_back_to_boilerplate(controller, store, adapter, repo):
    adapter.failures[CommitSummaryOutput] = RuntimeError("quota exceeded")
    job_key, result = await _run(controller, repo)

    assert result.pipeline_status == PipelineStatus.COMPLETED
    assert result.used_fallback is True

    row = await store.get(job_key)
    assert "**2** commits" in row.content
    assert "Add dark mode toggle" in row.content
    assert row.content.rstrip().endswith("*Note: This is an auto-generated summary.*")
    assert row.ai_detailed_contexts == []


@pytest.mark.asyncio
async def test_changelog_failure_falls_back_to_boilerplate(controller, store, adapter, repo):
    adapter.failures[ChangelogOutput] = RuntimeError("model overloaded")
    job_key, result = await _run(controller, repo)

    assert result.used_fallback is True
    assert "**2** commits" in (await store.get(job_key)).content


@pytest.mark.asyncio
async def test_no_commits_uses_boilerplate_without_ai(controller, store, github, adapter, repo):
    github.commits = []
    job_key, result = await _run(controller, repo)

    assert result.used_fallback is True
    assert CommitSummaryOutput not in adapter.calls
    assert ChangelogOutput not in adapter.calls
    assert "No commits were made during this period." in (await store.get(job_key)).content


@pytest.mark.asyncio
async def test_no_highlights_means_no_render(controller, store, engine, adapter, repo):
    adapter.highlights = []
    labels = []
    job_key, result = await _run(controller, repo, labels)

    assert result.pipeline_status == PipelineStatus.COMPLETED
    assert result.render_state == RenderState.IDLE
    assert labels[-1] == LABEL_DONE_NO_VIDEO
    assert engine.submissions == []

    status = await controller.get_status(job_key)
    assert status.state == RenderState.IDLE
    assert status.pipeline_status == PipelineStatus.COMPLETED
    assert status.video_url is None


@pytest.mark.asyncio
async def test_highlight_failure_means_no_render(controller, store, engine, adapter, repo):
    adapter.failures[HighlightsOutput] = RuntimeError("invalid JSON")
    job_key, result = await _run(controller, repo)

    assert result.pipeline_status == PipelineStatus.COMPLETED
    assert result.highlights == 0
    assert engine.submissions == []
    assert (await store.get(job_key)).content.startswith("# Weekly Update")


@pytest.mark.asyncio
async def test_submission_failure_keeps_content(controller, store, engine, repo):
    engine.fail_submissions("Render engine unreachable")
    job_key, result = await _run(controller, repo)

    assert result.pipeline_status == PipelineStatus.COMPLETED
    assert result.render_state == RenderState.FAILED

    status = await controller.get_status(job_key)
    assert status.state == RenderState.FAILED
    assert "Render engine unreachable" in status.error
    assert status.pipeline_status == PipelineStatus.COMPLETED
    assert (await store.get(job_key)).content.startswith("# Weekly Update")


@pytest.mark.asyncio
async def test_run_is_recorded(controller, store, repo):
    job_key, result = await _run(controller, repo)

    runs = await store.list_runs(job_key)
    assert len(runs) == 1
    assert runs[0].outcome == "completed"
    assert runs[0].completed_at is not None
    assert set(runs[0].log) >= {"fetch_stats", "summarize", "assemble", "highlights"}
