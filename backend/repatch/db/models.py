"""SQLAlchemy 2.0 ORM models for Repatch."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, JSON, Integer, Float, ForeignKey, Index, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class PatchNote(Base):
    """Patch note content record.

    Owns exactly one render job: the render_* and video_* columns are the
    embedded render state and are only ever written through the
    TransitionExecutor, conditioned on render_state.
    """
    __tablename__ = "patch_notes"
    __table_args__ = (
        Index("idx_patch_notes_render_state", "render_state"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    repo_name: Mapped[str] = mapped_column(String(200))
    repo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    branch: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    filters: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Generated content
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)  # {added, modified, removed}
    contributors: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    ai_detailed_contexts: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    video_top_changes: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # [{title, description}]

    # Content pipeline outcome (PipelineStatus)
    pipeline_status: Mapped[str] = mapped_column(String(30), default="pending")
    processing_stage: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # display only

    # Render job (RenderState)
    render_state: Mapped[str] = mapped_column(String(20), default="idle")
    render_progress: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    video_render_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    video_bucket_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    video_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    render_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )


class PipelineRun(Base):
    """PipelineRun model tracking execution metrics for one orchestrator run."""
    __tablename__ = "pipeline_runs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    patch_note_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("patch_notes.id"), index=True)
    started_at: Mapped[datetime] = mapped_column(server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    total_duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    log: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
