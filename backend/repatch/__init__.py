"""Repatch - AI-written patch notes with optional rendered video.

This module provides startup validation functions to ensure the render
engine is configured before any render is attempted.
Call validate_dependencies() during application startup.
"""

import logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> None:
    """Validate the render engine settings required to start a render.

    This function should be called during application startup to fail fast
    with a clear list of missing settings instead of failing on the first
    render submission.

    Raises:
        RuntimeError: If any required render engine setting is empty.
    """
    from repatch.config import settings

    engine = settings.render_engine
    missing = [
        name
        for name, value in (
            ("REPATCH_RENDER_ENGINE__BASE_URL", engine.base_url),
            ("REPATCH_RENDER_ENGINE__FUNCTION_NAME", engine.function_name),
            ("REPATCH_RENDER_ENGINE__SERVE_URL", engine.serve_url),
        )
        if not value
    ]
    if missing:
        raise RuntimeError(
            f"Missing required render engine settings: {', '.join(missing)}\n"
            "Set them in the environment, .env, or under render_engine in config.yaml."
        )
    logger.info(f"Render engine validated: {engine.base_url} ({engine.function_name})")
