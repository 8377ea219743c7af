"""HTTP surface over an in-process ASGI transport (lifespan not entered)."""

import uuid

import httpx
import pytest
import pytest_asyncio

from repatch.api.app import app
from repatch.orchestrator.controller import get_controller
from repatch.schemas.render import RenderProgress


@pytest_asyncio.fixture
async def client(controller):
    app.dependency_overrides[get_controller] = lambda: controller
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_create_runs_pipeline(client, controller, engine):
    response = await client.post("/api/patch-notes", json={"repository": "https://github.com/acme/widgets"})

    assert response.status_code == 202
    body = response.json()
    assert body["pipeline_status"] == "pending"
    assert body["status_url"] == f"/api/patch-notes/{body['patch_note_id']}/video-status"

    await controller.wait_for_background()
    detail = (await client.get(f"/api/patch-notes/{body['patch_note_id']}")).json()
    assert detail["repo_name"] == "acme/widgets"
    assert detail["content"].startswith("# Weekly Update")
    assert detail["video"]["state"] == "queued"
    assert len(engine.submissions) == 1


@pytest.mark.asyncio
async def test_process_reruns_pipeline_after_failure(client, controller, store, engine, note):
    await store.update(note.id, {"render_state": "failed", "render_error": "Engine crashed"})

    response = await client.post(f"/api/patch-notes/{note.id}/process")

    assert response.status_code == 202
    assert response.json()["pipeline_status"] == "pending"
    await controller.wait_for_background()
    row = await store.get(note.id)
    assert row.render_state == "queued"
    assert row.render_error is None
    assert len(engine.submissions) == 1


@pytest.mark.asyncio
async def test_process_while_rendering_conflicts(client, store, engine, note):
    await store.update(note.id, {"render_state": "rendering", "video_render_id": "r1",
                                 "video_bucket_name": "b1", "render_progress": 50})

    response = await client.post(f"/api/patch-notes/{note.id}/process")

    assert response.status_code == 409
    assert engine.submissions == []


@pytest.mark.asyncio
async def test_create_rejects_bad_repository(client):
    response = await client.post("/api/patch-notes", json={"repository": "widgets"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_patch_note_is_404(client):
    response = await client.get(f"/api/patch-notes/{uuid.uuid4()}/video-status")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


@pytest.mark.asyncio
async def test_render_and_poll(client, engine, note):
    started = await client.post(f"/api/patch-notes/{note.id}/render-video")
    assert started.status_code == 200
    assert started.json()["render_id"] == "render-1"

    engine.reports = [RenderProgress(fraction=1.0, done=True, output_ref="renders/render-1/out.mp4")]
    status = (await client.get(f"/api/patch-notes/{note.id}/video-status")).json()
    assert status["state"] == "completed"
    assert status["progress_percent"] == 100
    assert status["video_url"].endswith("renders/render-1/out.mp4")


@pytest.mark.asyncio
async def test_render_twice_conflicts(client, note):
    await client.post(f"/api/patch-notes/{note.id}/render-video")
    again = await client.post(f"/api/patch-notes/{note.id}/render-video")
    assert again.status_code == 409
    assert again.json()["error"] == "InvalidTransition"


@pytest.mark.asyncio
async def test_render_without_highlights_is_422(client, store):
    bare = await store.create(repo_name="acme/widgets", content="# Notes")
    response = await client.post(f"/api/patch-notes/{bare.id}/render-video")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_submission_failure_is_502(client, engine, note):
    engine.fail_submissions()
    response = await client.post(f"/api/patch-notes/{note.id}/render-video")
    assert response.status_code == 502
    assert response.json()["error"] == "EngineSubmissionFailed"


@pytest.mark.asyncio
async def test_list_patch_notes(client, note):
    items = (await client.get("/api/patch-notes")).json()
    assert [item["patch_note_id"] for item in items] == [str(note.id)]
    assert items[0]["render_state"] == "idle"
