"""Status reader normalization of stored rows."""

import uuid
from types import SimpleNamespace

import pytest

from repatch.orchestrator import status as status_module
from repatch.orchestrator.errors import NotFound
from repatch.orchestrator.state import PipelineStatus, RenderState
from repatch.orchestrator.status import (
    DEFAULT_FAILURE_MESSAGE,
    StatusCache,
    StatusReader,
)
from repatch.schemas.render import RenderJob


async def _note(store, **fields):
    fields.setdefault("repo_name", "acme/widgets")
    return await store.create(**fields)


@pytest.mark.asyncio
async def test_new_note_reads_idle(store):
    note = await _note(store)
    job = await StatusReader(store).read(note.id)
    assert job.state == RenderState.IDLE
    assert job.video_url is None
    assert job.engine_job_id is None
    assert job.to_status().progress_percent == 0


@pytest.mark.asyncio
async def test_missing_note_raises_not_found(store):
    with pytest.raises(NotFound):
        await StatusReader(store).read(uuid.uuid4())


@pytest.mark.asyncio
async def test_video_url_wins_over_state_label(store):
    note = await _note(store, render_state="rendering", render_progress=40,
                       video_url="https://cdn.example.com/v.mp4", video_render_id="r1",
                       video_bucket_name="b1")
    job = await StatusReader(store).read(note.id)
    assert job.state == RenderState.COMPLETED
    assert job.progress_percent == 100
    assert job.video_url == "https://cdn.example.com/v.mp4"
    assert job.engine_job_id is None


@pytest.mark.asyncio
async def test_completed_without_video_reads_idle(store):
    note = await _note(store, render_state="completed", pipeline_status="completed")
    job = await StatusReader(store).read(note.id)
    assert job.state == RenderState.IDLE
    assert job.pipeline_status == PipelineStatus.COMPLETED


@pytest.mark.asyncio
async def test_legacy_generating_video_reads_queued(store):
    note = await _note(store, render_state="generating_video",
                       video_render_id="r1", video_bucket_name="b1")
    job = await StatusReader(store).read(note.id)
    assert job.state == RenderState.QUEUED
    assert job.has_engine_handle


@pytest.mark.asyncio
async def test_rendering_exposes_progress_and_handle(store):
    note = await _note(store, render_state="rendering", render_progress=42,
                       video_render_id="r1", video_bucket_name="b1")
    status = (await StatusReader(store).read(note.id)).to_status()
    assert status.state == RenderState.RENDERING
    assert status.progress_percent == 42
    assert status.video_url is None
    assert status.error is None


@pytest.mark.asyncio
async def test_failed_without_message_gets_default(store):
    note = await _note(store, render_state="failed")
    status = (await StatusReader(store).read(note.id)).to_status()
    assert status.state == RenderState.FAILED
    assert status.error == DEFAULT_FAILURE_MESSAGE
    assert status.progress_percent == 0


@pytest.mark.asyncio
async def test_error_hidden_unless_failed(store):
    note = await _note(store, render_state="queued", render_error="old failure",
                       video_render_id="r1", video_bucket_name="b1")
    status = (await StatusReader(store).read(note.id)).to_status()
    assert status.state == RenderState.QUEUED
    assert status.error is None


@pytest.mark.asyncio
async def test_cached_read_served_until_invalidated(store):
    note = await _note(store)
    cache = StatusCache(ttl=60)
    reader = StatusReader(store, cache)

    first = await reader.read(note.id, use_cache=True)
    await store.update(note.id, {"render_state": "failed", "render_error": "boom"})

    assert (await reader.read(note.id, use_cache=True)) == first
    assert (await reader.read(note.id)).state == RenderState.FAILED

    cache.invalidate(note.id)
    assert (await reader.read(note.id, use_cache=True)).last_error == "boom"


def test_zero_ttl_cache_stores_nothing():
    cache = StatusCache(ttl=0)
    job_key = uuid.uuid4()
    cache.put(RenderJob(job_key=job_key, state=RenderState.IDLE))
    assert cache.get(job_key) is None


def test_put_drops_expired_entries(monkeypatch):
    clock = [100.0]
    monkeypatch.setattr(status_module, "time", SimpleNamespace(monotonic=lambda: clock[0]))
    cache = StatusCache(ttl=2)
    old_keys = [uuid.uuid4() for _ in range(3)]
    for key in old_keys:
        cache.put(RenderJob(job_key=key, state=RenderState.IDLE))

    clock[0] = 103.0
    fresh = uuid.uuid4()
    cache.put(RenderJob(job_key=fresh, state=RenderState.QUEUED))

    assert list(cache._entries) == [fresh]
    assert cache.get(fresh).state == RenderState.QUEUED
