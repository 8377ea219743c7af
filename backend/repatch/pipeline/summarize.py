"""Per-commit AI summaries and changelog assembly."""

import asyncio
import logging
import re
from typing import Optional

from pydantic import BaseModel, Field

from repatch.config import settings
from repatch.pipeline.content import filter_summary
from repatch.schemas.patch_note import (
    CommitInfo,
    DetailedContext,
    PatchNoteFilters,
    RepoInfo,
    RepoStats,
    SummaryTemplate,
)
from repatch.services.github_client import GitHubClient
from repatch.services.summarizer import ChangelogSummarizer, commit_context

logger = logging.getLogger(__name__)

PR_NUMBER_RE = re.compile(r"#(\d+)")


class EnrichedCommit(BaseModel):
    """Commit with its line counts and referenced PR number."""

    sha: str
    message: str
    additions: int = 0
    deletions: int = 0
    authors: list[str] = Field(default_factory=list)
    pr_number: Optional[int] = None

    @property
    def magnitude(self) -> int:
        return self.additions + self.deletions


def parse_pr_number(message: str) -> Optional[int]:
    match = PR_NUMBER_RE.search(message)
    return int(match.group(1)) if match else None


def sort_by_magnitude(commits: list[EnrichedCommit]) -> list[EnrichedCommit]:
    """Largest change (additions + deletions) first; stable for ties."""
    return sorted(commits, key=lambda c: c.magnitude, reverse=True)


async def enrich_commits(
    client: GitHubClient,
    repo: RepoInfo,
    commits: list[CommitInfo],
    concurrency: Optional[int] = None,
) -> list[EnrichedCommit]:
    semaphore = asyncio.Semaphore(concurrency or settings.github.concurrency)

    async def _enrich(commit: CommitInfo) -> EnrichedCommit:
        async with semaphore:
            additions, deletions = await client.commit_stats(repo.owner, repo.name, commit.sha)
        return EnrichedCommit(
            sha=commit.sha,
            message=commit.message,
            additions=additions,
            deletions=deletions,
            authors=[commit.author_login or commit.author_name],
            pr_number=parse_pr_number(commit.message),
        )

    return list(await asyncio.gather(*(_enrich(c) for c in commits)))


async def summarize_commits(
    client: GitHubClient,
    summarizer: ChangelogSummarizer,
    repo: RepoInfo,
    commits: list[CommitInfo],
    template: Optional[SummaryTemplate] = None,
    concurrency: Optional[int] = None,
) -> list[DetailedContext]:
    """AI summary for every commit, largest change first.

    Raises whatever the summarizer raises; the caller falls back.
    """
    enriched = sort_by_magnitude(await enrich_commits(client, repo, commits, concurrency))
    semaphore = asyncio.Semaphore(concurrency or settings.github.concurrency)

    async def _summarize(commit: EnrichedCommit) -> DetailedContext:
        async with semaphore:
            diff = await client.commit_diff(repo.owner, repo.name, commit.sha)
            pr = None
            if commit.pr_number is not None:
                pr = await client.pull_request_details(repo.owner, repo.name, commit.pr_number)
            context = commit_context(
                commit.message, commit.additions, commit.deletions, commit.authors, pr, commit.pr_number
            )
            summary = await summarizer.summarize_commit(diff, context, template)
        return DetailedContext(
            sha=commit.sha,
            message=commit.message,
            context=summary,
            additions=commit.additions,
            deletions=commit.deletions,
            authors=commit.authors,
            pr_number=commit.pr_number,
        )

    return list(await asyncio.gather(*(_summarize(c) for c in enriched)))


async def generate_changelog(
    client: GitHubClient,
    summarizer: ChangelogSummarizer,
    repo: RepoInfo,
    filters: Optional[PatchNoteFilters],
    commits: list[CommitInfo],
    stats: RepoStats,
    template: Optional[SummaryTemplate] = None,
) -> tuple[str, list[DetailedContext]]:
    """Summarize every commit, then assemble the Markdown changelog."""
    contexts = await summarize_commits(client, summarizer, repo, commits, template)
    logger.info("Summarized %d commits for %s", len(contexts), repo.full_name)
    content = await summarizer.assemble_changelog(
        contexts,
        template,
        repo_name=repo.full_name,
        period=filter_summary(filters),
        total_commits=stats.commits,
        additions=sum(c.additions for c in contexts),
        deletions=sum(c.deletions for c in contexts),
    )
    return content, contexts
