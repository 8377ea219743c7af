"""State machine constants and transition logic for render jobs.

Defines the closed set of render states, the legal transition table, and
pure predicates over them. No I/O happens here.
"""

from enum import Enum
from typing import Dict, Optional

from repatch.orchestrator.errors import InvalidTransition


class RenderState(str, Enum):
    """Canonical render states stored in patch_notes.render_state."""

    IDLE = "idle"
    QUEUED = "queued"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"


class RenderEvent(str, Enum):
    """Events that drive render state transitions."""

    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"
    FAIL = "fail"


class PipelineStatus(str, Enum):
    """Outcome of the content pipeline, kept apart from the render state."""

    PENDING = "pending"
    FETCHING_STATS = "fetching_stats"
    ANALYZING_COMMITS = "analyzing_commits"
    GENERATING_CONTENT = "generating_content"
    EXTRACTING_HIGHLIGHTS = "extracting_highlights"
    COMPLETED = "completed"
    FAILED = "failed"


RENDER_STATES = {
    RenderState.IDLE: "No render initiated",
    RenderState.QUEUED: "Render submitted, waiting for first progress report",
    RenderState.RENDERING: "Render engine reporting progress",
    RenderState.COMPLETED: "Video rendered and stored",
    RenderState.FAILED: "Render failed; may be restarted",
}

# (state, event) -> resulting state. Anything absent is rejected.
TRANSITIONS: Dict[RenderState, Dict[RenderEvent, RenderState]] = {
    RenderState.IDLE: {
        RenderEvent.START: RenderState.QUEUED,
        # Engine may finish before the first progress poll is observed
        RenderEvent.COMPLETE: RenderState.COMPLETED,
        RenderEvent.FAIL: RenderState.FAILED,
    },
    RenderState.QUEUED: {
        RenderEvent.PROGRESS: RenderState.RENDERING,
        RenderEvent.COMPLETE: RenderState.COMPLETED,
        RenderEvent.FAIL: RenderState.FAILED,
    },
    RenderState.RENDERING: {
        RenderEvent.PROGRESS: RenderState.RENDERING,
        RenderEvent.COMPLETE: RenderState.COMPLETED,
        RenderEvent.FAIL: RenderState.FAILED,
    },
    RenderState.COMPLETED: {},
    RenderState.FAILED: {
        RenderEvent.START: RenderState.QUEUED,
    },
}

TERMINAL_STATES = {RenderState.COMPLETED, RenderState.FAILED}
ACTIVE_STATES = {RenderState.QUEUED, RenderState.RENDERING}

# States a re-render may reset from
RESETTABLE_STATES = {RenderState.IDLE, RenderState.COMPLETED, RenderState.FAILED}

# Labels written by earlier releases, where the processing stage doubled as state
_LEGACY_LABELS: Dict[str, RenderState] = {
    "pending": RenderState.IDLE,
    "fetching_stats": RenderState.IDLE,
    "analyzing_commits": RenderState.IDLE,
    "generating_content": RenderState.IDLE,
    "generating_video": RenderState.QUEUED,
    "complete": RenderState.COMPLETED,
    "error": RenderState.FAILED,
}


def parse_state(raw: Optional[str]) -> RenderState:
    """Map a stored render_state value onto the canonical enum.

    Args:
        raw: Column value as stored (may be NULL or a legacy label)

    Returns:
        Canonical RenderState

    Raises:
        ValueError: If the value is neither canonical nor a known legacy label
    """
    if raw is None or raw == "":
        return RenderState.IDLE
    try:
        return RenderState(raw)
    except ValueError:
        pass
    if raw in _LEGACY_LABELS:
        return _LEGACY_LABELS[raw]
    raise ValueError(f"Unknown render state: {raw!r}")


def can_apply(state: RenderState, event: RenderEvent) -> bool:
    """Check whether event is legal from state."""
    return event in TRANSITIONS[state]


def next_state(state: RenderState, event: RenderEvent) -> RenderState:
    """Resolve the state an event leads to.

    Raises:
        InvalidTransition: If (state, event) is not in the table
    """
    try:
        return TRANSITIONS[state][event]
    except KeyError:
        raise InvalidTransition(state.value, event.value) from None


def is_terminal(state: RenderState) -> bool:
    """Check if state has no outgoing edges except explicit retry."""
    return state in TERMINAL_STATES


def is_active(state: RenderState) -> bool:
    """Check if a render is in flight on the engine."""
    return state in ACTIVE_STATES


# Pipeline outcome labels written by earlier releases
_LEGACY_PIPELINE_LABELS: Dict[str, PipelineStatus] = {
    "generating_video": PipelineStatus.COMPLETED,
    "complete": PipelineStatus.COMPLETED,
    "error": PipelineStatus.FAILED,
}


def parse_pipeline_status(raw: Optional[str]) -> PipelineStatus:
    """Map a stored pipeline_status value onto PipelineStatus.

    Unknown labels read as pending; the column is display data and never
    gates a render transition.
    """
    if not raw:
        return PipelineStatus.PENDING
    try:
        return PipelineStatus(raw)
    except ValueError:
        return _LEGACY_PIPELINE_LABELS.get(raw, PipelineStatus.PENDING)
