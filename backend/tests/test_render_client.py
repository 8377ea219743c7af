"""Render engine HTTP client against an httpx MockTransport."""

import json

import httpx
import pytest

from repatch.orchestrator.errors import EngineFatalError, EngineSubmissionFailed, RenderEngineError
from repatch.schemas.render import RenderRequest
from repatch.services.render_client import RenderEngineClient, parse_progress

REQUEST = RenderRequest(
    function_name="render-fn",
    serve_url="https://serve.example.com/site",
    composition="basecomp",
    input_props={"repositorySlug": "widgets", "topChanges": []},
)


def _client(handler, max_attempts: int = 1) -> RenderEngineClient:
    return RenderEngineClient(
        "https://engine.example.com",
        api_key="secret",
        max_attempts=max_attempts,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_submit_sends_camel_case_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"renderId": "abc", "bucketName": "bucket-1"})

    client = _client(handler)
    handle = await client.submit(REQUEST)
    await client.close()

    assert (handle.job_id, handle.bucket) == ("abc", "bucket-1")
    assert seen["path"] == "/renders"
    assert seen["auth"] == "Bearer secret"
    body = seen["body"]
    assert body["functionName"] == "render-fn"
    assert body["serveUrl"] == "https://serve.example.com/site"
    assert body["imageFormat"] == "jpeg"
    assert body["maxRetries"] == 1
    assert body["inputProps"]["repositorySlug"] == "widgets"


@pytest.mark.asyncio
async def test_submit_http_error():
    client = _client(lambda request: httpx.Response(500, json={"message": "boom"}))
    with pytest.raises(EngineSubmissionFailed, match="HTTP 500"):
        await client.submit(REQUEST)
    await client.close()


@pytest.mark.asyncio
async def test_submit_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, max_attempts=3)
    with pytest.raises(EngineSubmissionFailed):
        await client.submit(REQUEST)
    await client.close()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_submit_without_handle():
    client = _client(lambda request: httpx.Response(200, json={"renderId": "abc"}))
    with pytest.raises(EngineSubmissionFailed, match="missing renderId or bucketName"):
        await client.submit(REQUEST)
    await client.close()


@pytest.mark.asyncio
async def test_progress_query():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["bucket"] = request.url.params.get("bucket")
        return httpx.Response(200, json={"overallProgress": 0.42, "done": False})

    client = _client(handler)
    progress = await client.progress("abc", "bucket-1")
    await client.close()

    assert seen == {"path": "/renders/abc", "bucket": "bucket-1"}
    assert progress.fraction == pytest.approx(0.42)
    assert progress.done is False
    assert progress.fatal_error is None


@pytest.mark.asyncio
async def test_progress_error_status():
    client = _client(lambda request: httpx.Response(503))
    with pytest.raises(RenderEngineError, match="HTTP 503"):
        await client.progress("abc", "bucket-1")
    await client.close()


@pytest.mark.asyncio
async def test_progress_unknown_render():
    client = _client(lambda request: httpx.Response(404))
    with pytest.raises(EngineFatalError, match="unknown to the render engine"):
        await client.progress("abc", "bucket-1")
    await client.close()


@pytest.mark.asyncio
async def test_progress_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(RenderEngineError, match="unreachable"):
        await client.progress("abc", "bucket-1")
    await client.close()


def test_parse_progress_done():
    progress = parse_progress({"overallProgress": 1, "done": True, "outputFile": "renders/abc/out.mp4"})
    assert progress.done
    assert progress.output_ref == "renders/abc/out.mp4"


def test_parse_progress_fatal_error_message():
    progress = parse_progress({
        "overallProgress": 0.3,
        "fatalErrorEncountered": True,
        "errors": [{"message": "Chromium crashed"}, {"message": "second"}],
    })
    assert progress.fatal_error == "Chromium crashed"


def test_parse_progress_fatal_error_without_details():
    progress = parse_progress({"fatalErrorEncountered": True, "errors": []})
    assert progress.fatal_error == "Unknown render error"


def test_parse_progress_clamps_fraction():
    assert parse_progress({"overallProgress": 1.7}).fraction == 1.0
    assert parse_progress({"overallProgress": "n/a"}).fraction == 0.0
