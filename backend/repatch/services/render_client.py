"""HTTP client for the external video render engine.

The engine is an opaque asynchronous service: a render is submitted once
and then polled by its (render id, bucket) handle until it reports
completion or a fatal error.

Wire contract:
    POST /renders            {functionName, serveUrl, composition, codec,
                              imageFormat, privacy, maxRetries, inputProps}
                             -> {renderId, bucketName}
    GET  /renders/{id}?bucket=...
                             -> {overallProgress, done, outputFile,
                                 fatalErrorEncountered, errors: [{message}]}

Usage:
    from repatch.services.render_client import get_render_client

    client = get_render_client()
    handle = await client.submit(request)
    progress = await client.progress(handle.job_id, handle.bucket)
"""

import logging
from typing import Any, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from repatch.config import settings
from repatch.orchestrator.errors import EngineFatalError, EngineSubmissionFailed, RenderEngineError
from repatch.schemas.render import RenderHandle, RenderProgress, RenderRequest

logger = logging.getLogger(__name__)

UNKNOWN_RENDER_ERROR = "Unknown render error"


def parse_progress(data: dict[str, Any]) -> RenderProgress:
    """Normalize a raw engine progress payload."""
    fatal_error = None
    if data.get("fatalErrorEncountered"):
        errors = data.get("errors") or []
        first = errors[0] if errors else {}
        fatal_error = (first.get("message") if isinstance(first, dict) else None) or UNKNOWN_RENDER_ERROR

    try:
        fraction = float(data.get("overallProgress") or 0.0)
    except (TypeError, ValueError):
        fraction = 0.0

    return RenderProgress(
        fraction=max(0.0, min(1.0, fraction)),
        done=bool(data.get("done")),
        output_ref=data.get("outputFile") or None,
        fatal_error=fatal_error,
    )


class RenderEngineClient:
    """Async client for the render engine HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 60.0,
        max_attempts: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def submit(self, request: RenderRequest) -> RenderHandle:
        """Submit a render. Never retried: a duplicate submit starts a second render.

        Raises:
            EngineSubmissionFailed: Transport error, non-2xx response or a
                response without a render handle
        """
        payload = {
            "functionName": request.function_name,
            "serveUrl": request.serve_url,
            "composition": request.composition,
            "codec": request.codec,
            "imageFormat": request.image_format,
            "privacy": request.privacy,
            "maxRetries": request.max_retries,
            "inputProps": request.input_props,
        }
        logger.info(
            "POST %s/renders composition=%s function=%s",
            self.base_url, request.composition, request.function_name,
        )
        try:
            response = await self.client.post("/renders", json=payload)
            logger.info("  submit response: HTTP %d", response.status_code)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise EngineSubmissionFailed(
                f"Render engine rejected submission: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise EngineSubmissionFailed(f"Render engine unreachable: {e}") from e
        except ValueError as e:
            raise EngineSubmissionFailed("Render engine returned invalid JSON") from e

        render_id = data.get("renderId")
        bucket = data.get("bucketName")
        if not render_id or not bucket:
            raise EngineSubmissionFailed("Render engine response is missing renderId or bucketName")

        logger.info("  render_id=%s bucket=%s", render_id, bucket)
        return RenderHandle(job_id=render_id, bucket=bucket)

    async def progress(self, job_id: str, bucket: str) -> RenderProgress:
        """Fetch progress for a running render.

        Transport errors are retried; HTTP error responses are not.

        Raises:
            EngineFatalError: The engine no longer knows this render
            RenderEngineError: The engine could not be reached or answered
                with an error status
        """

        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> httpx.Response:
            return await self.client.get(f"/renders/{job_id}", params={"bucket": bucket})

        try:
            response = await _call()
            logger.debug(
                "GET %s/renders/%s: HTTP %d", self.base_url, job_id, response.status_code,
            )
            if response.status_code == 404:
                raise EngineFatalError(f"Render {job_id} is unknown to the render engine")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise RenderEngineError(
                f"Render progress request failed: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise RenderEngineError(f"Render engine unreachable: {e}") from e
        except ValueError as e:
            raise RenderEngineError("Render engine returned invalid JSON") from e

        progress = parse_progress(data)
        logger.debug(
            "  fraction=%.2f done=%s output=%s fatal=%s",
            progress.fraction, progress.done, progress.output_ref, progress.fatal_error,
        )
        return progress

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Module-level lazy singleton
# ---------------------------------------------------------------------------

_render_client: Optional[RenderEngineClient] = None


def get_render_client() -> RenderEngineClient:
    """Get or create the RenderEngineClient configured from settings."""
    global _render_client
    if _render_client is None:
        cfg = settings.render_engine
        _render_client = RenderEngineClient(
            cfg.base_url,
            cfg.api_key,
            timeout=cfg.request_timeout,
            max_attempts=settings.pipeline.retry_max_attempts,
        )
    return _render_client


async def close_render_client() -> None:
    """Close and discard the singleton client."""
    global _render_client
    if _render_client is not None:
        await _render_client.close()
        _render_client = None
