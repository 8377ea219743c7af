"""
Database module for repatch.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncEngine

from repatch.db.engine import (
    async_session,
    build_engine,
    build_session_factory,
    engine,
    shutdown,
)
from repatch.db.models import Base, PatchNote, PipelineRun

logger = logging.getLogger(__name__)


async def _run_migrations(conn) -> None:
    """Run safe ALTER TABLE migrations for columns added after first release (idempotent)."""
    migrations = [
        # Render tracking
        "ALTER TABLE patch_notes ADD COLUMN video_render_id VARCHAR(255)",
        "ALTER TABLE patch_notes ADD COLUMN video_bucket_name VARCHAR(255)",
        "ALTER TABLE patch_notes ADD COLUMN render_progress INTEGER",
        # Highlights for the video summary
        "ALTER TABLE patch_notes ADD COLUMN video_top_changes JSON",
        "ALTER TABLE patch_notes ADD COLUMN ai_detailed_contexts JSON",
        # Run outcome
        "ALTER TABLE pipeline_runs ADD COLUMN outcome VARCHAR(30)",
    ]
    for sql in migrations:
        try:
            await conn.execute(text(sql))
        except (OperationalError, ProgrammingError):
            # Column already exists
            logger.debug("Migration already applied: %s", sql)


async def init_database(bind: AsyncEngine | None = None):
    """Initialize database schema on first run."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await _run_migrations(conn)


__all__ = [
    "Base",
    "PatchNote",
    "PipelineRun",
    "engine",
    "async_session",
    "build_engine",
    "build_session_factory",
    "shutdown",
    "init_database",
]
