"""Shared fixtures: a throwaway SQLite database and in-process fakes for
the render engine, the commit history service and the AI text service."""

import asyncio
from datetime import datetime, timezone
from typing import Optional, Type

import pytest
import pytest_asyncio
from pydantic import BaseModel

from repatch.db import init_database
from repatch.db.engine import build_engine, build_session_factory
from repatch.db.store import PatchNoteStore
from repatch.orchestrator.controller import RenderController
from repatch.orchestrator.errors import EngineSubmissionFailed, RenderEngineError
from repatch.orchestrator.status import StatusCache
from repatch.schemas.patch_note import (
    ChangelogOutput,
    CommitInfo,
    CommitSummaryOutput,
    Highlight,
    HighlightsOutput,
    RepoInfo,
)
from repatch.schemas.render import RenderHandle, RenderProgress, RenderRequest
from repatch.services.github_client import GitHubError
from repatch.services.llm import LLMAdapter
from repatch.services.summarizer import ChangelogSummarizer


class FakeRenderEngine:
    """Render engine double: records submissions, replays progress reports."""

    def __init__(self):
        self.submissions: list[RenderRequest] = []
        self.progress_calls: list[tuple[str, str]] = []
        self.reports: list = []
        self.submit_error: Optional[Exception] = None
        self._next_id = 0

    async def submit(self, request: RenderRequest) -> RenderHandle:
        self.submissions.append(request)
        if self.submit_error is not None:
            raise self.submit_error
        self._next_id += 1
        return RenderHandle(job_id=f"render-{self._next_id}", bucket="remotion-bucket")

    async def progress(self, job_id: str, bucket: str) -> RenderProgress:
        self.progress_calls.append((job_id, bucket))
        if not self.reports:
            return RenderProgress(fraction=0.0)
        report = self.reports.pop(0) if len(self.reports) > 1 else self.reports[0]
        if isinstance(report, Exception):
            raise report
        return report

    def fail_submissions(self, message: str = "HTTP 500") -> None:
        self.submit_error = EngineSubmissionFailed(message)

    def unreachable(self) -> None:
        self.reports = [RenderEngineError("Render engine unreachable: connection refused")]


class HeldEngine(FakeRenderEngine):
    """Holds the first progress call until ``release`` is set, then answers
    it with ``held_report``. Later calls answer from ``reports`` at once."""

    def __init__(self, held_report: RenderProgress, report: RenderProgress):
        super().__init__()
        self.held_report = held_report
        self.reports = [report]
        self.holding = asyncio.Event()
        self.release = asyncio.Event()

    async def progress(self, job_id: str, bucket: str) -> RenderProgress:
        if self.holding.is_set():
            return await super().progress(job_id, bucket)
        self.progress_calls.append((job_id, bucket))
        self.holding.set()
        await self.release.wait()
        return self.held_report


class FakeGitHub:
    """Commit history double with a fixed commit list."""

    def __init__(self, commits: Optional[list[CommitInfo]] = None):
        self.commits = commits if commits is not None else []
        self.list_error: Optional[Exception] = None
        self.stats: dict[str, tuple[int, int]] = {}
        self.labels: dict[str, list[str]] = {}
        self.tags: list[dict[str, str]] = []

    async def list_commits(self, owner, repo, since=None, until=None, branch=None):
        if self.list_error is not None:
            raise self.list_error
        return list(self.commits)

    async def list_commits_for_ref(self, owner, repo, ref):
        return list(self.commits)

    async def compare(self, owner, repo, base, head):
        return list(self.commits)

    async def list_tags(self, owner, repo):
        return list(self.tags)

    async def commit_stats(self, owner, repo, sha):
        return self.stats.get(sha, (10, 2))

    async def commit_diff(self, owner, repo, sha):
        return f"diff --git a/{sha} b/{sha}"

    async def pull_request_details(self, owner, repo, number):
        return None

    async def commit_labels(self, owner, repo, sha):
        return list(self.labels.get(sha, []))

    def fail_listing(self, message: str = "GitHub request failed: HTTP 403") -> None:
        self.list_error = GitHubError(message, status_code=403)


class FakeAdapter(LLMAdapter):
    """AI text service double answering each structured output schema."""

    provider = "fake"

    def __init__(self):
        super().__init__("fake/summarizer")
        self.calls: list[Type[BaseModel]] = []
        self.failures: dict[Type[BaseModel], Exception] = {}
        self.highlights = [
            Highlight(title="Faster builds", description="Builds finish in half the time."),
            Highlight(title="Dark mode", description="The dashboard now has a dark theme."),
            Highlight(title="Fewer crashes", description="A startup crash on Windows is fixed."),
        ]

    async def complete_json(self, prompt, schema, *, temperature, system_prompt):
        self.calls.append(schema)
        if schema in self.failures:
            raise self.failures[schema]
        if schema is CommitSummaryOutput:
            reply = CommitSummaryOutput(summary="Speeds up incremental builds by caching parsed files.")
        elif schema is ChangelogOutput:
            reply = ChangelogOutput(markdown="# Weekly Update\n\n## Key Changes\n\n- Faster builds")
        elif schema is HighlightsOutput:
            reply = HighlightsOutput(highlights=list(self.highlights))
        else:
            raise AssertionError(f"Unexpected schema {schema.__name__}")
        return reply.model_dump_json()


class BarrierStore(PatchNoteStore):
    """Holds every reader until ``parties`` of them have loaded the row."""

    def __init__(self, session_factory, parties: int = 2):
        super().__init__(session_factory)
        self.parties = parties
        self.arrived = 0
        self.released = asyncio.Event()

    async def get(self, key):
        row = await super().get(key)
        self.arrived += 1
        if self.arrived >= self.parties:
            self.released.set()
        await self.released.wait()
        return row


def make_commit(sha: str, message: str, login: Optional[str] = "octocat") -> CommitInfo:
    return CommitInfo(
        sha=sha,
        message=message,
        author_name="The Octocat",
        author_login=login,
        authored_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


HIGHLIGHTS = [
    {"title": "Faster builds", "description": "Builds finish in half the time."},
    {"title": "Dark mode", "description": "The dashboard now has a dark theme."},
]


@pytest_asyncio.fixture
async def store(tmp_path):
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'repatch-test.db'}")
    await init_database(db_engine)
    yield PatchNoteStore(build_session_factory(db_engine))
    await db_engine.dispose()


@pytest.fixture
def engine():
    return FakeRenderEngine()


@pytest.fixture
def github():
    return FakeGitHub([
        make_commit("a1", "Cache parsed files between builds (#12)"),
        make_commit("b2", "Add dark mode toggle", login="hubot"),
    ])


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def repo():
    return RepoInfo(owner="acme", name="widgets")


@pytest.fixture
def controller(store, engine, github, adapter):
    return RenderController(
        store=store,
        engine=engine,
        github=github,
        summarizer=ChangelogSummarizer(adapter=adapter, max_retries=1),
        cache=StatusCache(ttl=0),
    )


@pytest_asyncio.fixture
async def note(store):
    """A patch note with content and highlights, ready to render."""
    return await store.create(
        repo_name="acme/widgets",
        repo_url="https://github.com/acme/widgets",
        title="acme/widgets update",
        content="# Weekly Update",
        video_top_changes=HIGHLIGHTS,
        ai_detailed_contexts=[
            {"sha": "a1", "message": "Cache parsed files\n\nLong body", "context": "Builds are faster."},
        ],
        pipeline_status="completed",
    )
