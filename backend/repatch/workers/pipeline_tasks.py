"""Render housekeeping tasks: watching a render and failing stale ones.

The CLI calls these directly. Progress lives in the database, not in
memory, so any process can report it.
"""

import asyncio
import logging
import uuid
from typing import Callable, Optional

from repatch.config import settings
from repatch.orchestrator.controller import RenderController, get_controller
from repatch.orchestrator.state import is_active
from repatch.schemas.render import StatusView

logger = logging.getLogger(__name__)


async def watch_render(
    job_key: uuid.UUID,
    interval: Optional[float] = None,
    timeout: Optional[float] = None,
    controller: Optional[RenderController] = None,
    on_status: Optional[Callable[[StatusView], None]] = None,
) -> StatusView:
    """Poll a render until it leaves the active states or ``timeout`` elapses."""
    controller = controller or get_controller()
    interval = interval if interval is not None else settings.render_engine.poll_interval
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout else None

    while True:
        status = await controller.get_status(job_key)
        if on_status:
            on_status(status)
        if not is_active(status.state):
            return status
        if deadline is not None and loop.time() >= deadline:
            logger.warning("Stopped watching render %s after %.0fs", job_key, timeout)
            return status
        await asyncio.sleep(interval)


async def fail_stale_renders(
    threshold_seconds: Optional[int] = None,
    controller: Optional[RenderController] = None,
) -> list[uuid.UUID]:
    """Fail renders stuck in queued/rendering past the threshold."""
    controller = controller or get_controller()
    failed = await controller.fail_stale(threshold_seconds)
    if failed:
        logger.warning(f"Failed {len(failed)} stale render(s)")
    return failed
