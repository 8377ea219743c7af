"""Error taxonomy for the render-job lifecycle controller."""

from __future__ import annotations

import uuid
from typing import Optional


class RenderControllerError(Exception):
    """Base class for all render controller errors."""


class NotFound(RenderControllerError):
    """The owner record for a job key does not exist."""

    def __init__(self, job_key: uuid.UUID):
        self.job_key = job_key
        super().__init__(f"Patch note {job_key} not found")


class StoreError(RenderControllerError):
    """Transport or database fault in the persisted record store."""


class InvalidTransition(RenderControllerError):
    """The (state, event) pair is not in the transition table."""

    def __init__(self, from_state: str, event: str):
        self.from_state = from_state
        self.event = event
        super().__init__(f"Invalid render transition: {event} from {from_state}")


class ConcurrentModification(RenderControllerError):
    """A conditional write matched no row: another writer moved the state first."""

    def __init__(self, job_key: uuid.UUID, expected_state: Optional[str]):
        self.job_key = job_key
        self.expected_state = expected_state
        super().__init__(
            f"Patch note {job_key} changed concurrently "
            f"(expected render_state={expected_state!r})"
        )


class MissingContent(RenderControllerError):
    """A render was requested before video highlights were assembled."""

    def __init__(self, job_key: uuid.UUID):
        self.job_key = job_key
        super().__init__(
            f"Patch note {job_key} has no video highlights; "
            "the content pipeline must produce them before rendering"
        )


class RenderEngineError(RenderControllerError):
    """Transport or protocol failure talking to the render engine."""


class EngineSubmissionFailed(RenderEngineError):
    """The render engine rejected or never received a render submission."""


class EngineFatalError(RenderEngineError):
    """The render engine can no longer produce a running job's video."""
