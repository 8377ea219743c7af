"""RenderController surface: background pipeline, status polling, stale reaping."""

import asyncio
from datetime import datetime

import pytest

from conftest import HeldEngine
from repatch.orchestrator.controller import RenderController
from repatch.orchestrator.errors import InvalidTransition
from repatch.orchestrator.state import PipelineStatus, RenderState
from repatch.orchestrator.status import StatusCache
from repatch.schemas.render import RenderProgress
from repatch.workers.pipeline_tasks import fail_stale_renders, watch_render


@pytest.mark.asyncio
async def test_start_pipeline_runs_in_background(controller, store, repo):
    note = await controller.create_patch_note(repo)

    task = await controller.start_pipeline(note.id, repo)
    await controller.wait_for_background()

    assert task.done()
    job = await controller.read(note.id)
    assert job.pipeline_status == PipelineStatus.COMPLETED
    assert job.state == RenderState.QUEUED


@pytest.mark.asyncio
async def test_start_pipeline_rejects_active_render(controller, store, repo):
    note = await controller.create_patch_note(repo)
    await store.update(note.id, {"render_state": "rendering", "video_render_id": "r1",
                                 "video_bucket_name": "b1", "render_progress": 50})

    with pytest.raises(InvalidTransition):
        await controller.start_pipeline(note.id, repo)

    row = await store.get(note.id)
    assert row.render_state == "rendering"
    assert row.video_render_id == "r1"


@pytest.mark.asyncio
async def test_start_pipeline_resets_finished_render(controller, store, engine, repo):
    note = await controller.create_patch_note(repo)
    await store.update(note.id, {"render_state": "completed", "video_url": "https://cdn.example.com/old.mp4"})

    await controller.start_pipeline(note.id, repo)
    await controller.wait_for_background()

    row = await store.get(note.id)
    assert row.video_url is None
    assert row.render_state == "queued"
    assert len(engine.submissions) == 1


@pytest.mark.asyncio
async def test_get_status_follows_render_to_completion(controller, engine, note):
    await controller.start_render(note.id)
    engine.reports = [
        RenderProgress(fraction=0.5),
        RenderProgress(fraction=1.0, done=True, output_ref="renders/render-1/out.mp4"),
    ]

    rendering = await controller.get_status(note.id)
    assert rendering.state == RenderState.RENDERING
    assert rendering.progress_percent == 50

    done = await controller.get_status(note.id)
    assert done.state == RenderState.COMPLETED
    assert done.progress_percent == 100
    assert done.video_url.endswith("renders/render-1/out.mp4")
    assert done.error is None


@pytest.mark.asyncio
async def test_get_status_survives_engine_outage(controller, engine, note):
    await controller.start_render(note.id)
    engine.unreachable()

    status = await controller.get_status(note.id)

    assert status.state == RenderState.QUEUED
    assert status.error is None


HANDLE = {"video_render_id": "render-1", "video_bucket_name": "bucket-1"}
DONE = RenderProgress(fraction=1.0, done=True, output_ref="renders/render-1/out.mp4")


async def _two_tabs(controller, engine, job_key):
    """Tab one polls and is held inside the engine call while tab two polls
    to completion."""

    async def held_tab():
        return await controller.get_status(job_key)

    async def quick_tab():
        await engine.holding.wait()
        try:
            return await controller.get_status(job_key)
        finally:
            engine.release.set()

    return await asyncio.gather(held_tab(), quick_tab())


@pytest.mark.asyncio
@pytest.mark.parametrize("row,held_report", [
    ({"render_state": "rendering", "render_progress": 40}, DONE),
    ({"render_state": "rendering", "render_progress": 40}, RenderProgress(fraction=0.5)),
    ({"render_state": "queued"}, RenderProgress(fraction=0.3)),
    ({"render_state": "rendering", "render_progress": 40}, RenderProgress(fraction=0.5, fatal_error="Out of memory")),
])
async def test_concurrent_status_polls_both_see_completion(store, row, held_report):
    note = await store.create(repo_name="acme/widgets", **HANDLE, **row)
    engine = HeldEngine(held_report, DONE)
    controller = RenderController(store=store, engine=engine, cache=StatusCache(ttl=0))

    held, quick = await _two_tabs(controller, engine, note.id)

    assert quick.state == RenderState.COMPLETED
    assert held.state == RenderState.COMPLETED
    assert held.video_url == quick.video_url
    assert len(engine.progress_calls) == 2

    stored = await store.get(note.id)
    assert stored.render_state == "completed"
    assert stored.render_progress == 100
    assert stored.render_error is None


@pytest.mark.asyncio
async def test_concurrent_status_polls_both_see_failure(store):
    note = await store.create(repo_name="acme/widgets", render_state="rendering",
                              render_progress=40, **HANDLE)
    engine = HeldEngine(DONE, RenderProgress(fraction=0.4, fatal_error="Out of memory"))
    controller = RenderController(store=store, engine=engine, cache=StatusCache(ttl=0))

    held, quick = await _two_tabs(controller, engine, note.id)

    assert quick.state == RenderState.FAILED
    assert held.state == RenderState.FAILED
    assert held.error == "Out of memory"
    assert held.video_url is None
    assert (await store.get(note.id)).video_url is None


@pytest.mark.asyncio
async def test_regenerate_video(controller, store, engine, note):
    await store.update(note.id, {"render_state": "completed", "video_url": "https://cdn.example.com/old.mp4"})

    handle = await controller.regenerate_video(note.id)

    job = await controller.read(note.id)
    assert job.state == RenderState.QUEUED
    assert job.video_url is None
    assert job.engine_job_id == handle.job_id
    assert len(engine.submissions) == 1


@pytest.mark.asyncio
async def test_fail_stale_only_touches_old_active_jobs(controller, store):
    stale = await store.create(repo_name="acme/widgets", render_state="rendering",
                               video_render_id="r1", video_bucket_name="b1", render_progress=10)
    fresh = await store.create(repo_name="acme/widgets", render_state="queued",
                               video_render_id="r2", video_bucket_name="b2")
    finished = await store.create(repo_name="acme/widgets", render_state="completed",
                                  video_url="https://cdn.example.com/v.mp4")
    old = datetime(2020, 1, 1)
    await store.update(stale.id, {"updated_at": old})
    await store.update(finished.id, {"updated_at": old})

    failed = await fail_stale_renders(900, controller=controller)

    assert failed == [stale.id]
    assert (await store.get(stale.id)).render_error == "Video render timed out"
    assert (await store.get(fresh.id)).render_state == "queued"
    assert (await store.get(finished.id)).render_state == "completed"


@pytest.mark.asyncio
async def test_background_task_logs_instead_of_raising(controller, store, repo, github):
    note = await controller.create_patch_note(repo)
    github.fail_listing()

    task = await controller.start_pipeline(note.id, repo)
    await controller.wait_for_background()

    assert task.result() is None

    row = await store.get(note.id)
    assert row.pipeline_status == "failed"
    assert row.render_state == "failed"


@pytest.mark.asyncio
async def test_watch_render_stops_at_terminal_state(controller, engine, note):
    await controller.start_render(note.id)
    engine.reports = [
        RenderProgress(fraction=0.3),
        RenderProgress(fraction=0.4, fatal_error="Out of memory"),
    ]
    seen = []

    status = await watch_render(note.id, interval=0, controller=controller, on_status=seen.append)

    assert status.state == RenderState.FAILED
    assert status.error == "Out of memory"
    assert [s.state for s in seen] == [RenderState.RENDERING, RenderState.FAILED]
