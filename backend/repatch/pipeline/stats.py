"""Repository statistics for a filter window."""

import asyncio
import logging
from typing import Optional

from repatch.config import settings
from repatch.pipeline.commits import collect_commits
from repatch.schemas.patch_note import CommitInfo, PatchNoteFilters, RepoInfo, RepoStats
from repatch.services.github_client import GitHubClient

logger = logging.getLogger(__name__)


def unique_contributors(commits: list[CommitInfo]) -> list[str]:
    """@login where known, else the author name; first-seen order."""
    seen: dict[str, None] = {}
    for commit in commits:
        if commit.contributor:
            seen.setdefault(commit.contributor, None)
    return list(seen)


async def compute_stats(
    client: GitHubClient,
    repo: RepoInfo,
    commits: list[CommitInfo],
    sample_size: Optional[int] = None,
) -> RepoStats:
    """Aggregate stats for already-collected commits.

    Line counts come from the most recent ``sample_size`` commits and are
    scaled up to the full commit count.
    """
    if not commits:
        return RepoStats()

    size = sample_size or settings.github.stats_sample_size
    sample = commits[:size]
    semaphore = asyncio.Semaphore(settings.github.concurrency)

    async def _stats(commit: CommitInfo) -> tuple[int, int]:
        async with semaphore:
            return await client.commit_stats(repo.owner, repo.name, commit.sha)

    results = await asyncio.gather(*(_stats(c) for c in sample))
    additions = sum(a for a, _ in results)
    deletions = sum(d for _, d in results)

    factor = len(commits) / len(sample)
    return RepoStats(
        commits=len(commits),
        additions=round(additions * factor),
        deletions=round(deletions * factor),
        contributors=unique_contributors(commits),
        commit_messages=[c.message for c in commits],
    )


async def fetch_repo_stats(
    client: GitHubClient,
    repo: RepoInfo,
    filters: Optional[PatchNoteFilters] = None,
) -> tuple[list[CommitInfo], RepoStats]:
    """Collect the window's commits and their stats.

    Raises:
        GitHubError: The commit listing failed
    """
    commits = await collect_commits(client, repo, filters)
    stats = await compute_stats(client, repo, commits)
    logger.info(
        "Stats for %s: %d commits, +%d/-%d, %d contributors",
        repo.full_name, stats.commits, stats.additions, stats.deletions, len(stats.contributors),
    )
    return commits, stats
