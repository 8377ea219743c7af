"""Commit window selection for a patch note's filters."""

import asyncio
import calendar
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from repatch.config import settings
from repatch.schemas.patch_note import CommitInfo, PatchNoteFilters, ReleaseRef, RepoInfo, TimePreset
from repatch.services.github_client import GitHubClient, GitHubError

logger = logging.getLogger(__name__)

DEFAULT_PRESET: TimePreset = "1week"


def _one_month_before(moment: datetime) -> datetime:
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def date_range(preset: Optional[TimePreset], now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """(since, until) for a preset, ending now."""
    until = now or datetime.now(timezone.utc)
    preset = preset or DEFAULT_PRESET
    if preset == "1day":
        since = until - timedelta(days=1)
    elif preset == "1month":
        since = _one_month_before(until)
    else:
        since = until - timedelta(days=7)
    return since, until


async def _commits_for_release(
    client: GitHubClient, repo: RepoInfo, release: ReleaseRef, window_days: int
) -> list[CommitInfo]:
    if release.previous_tag:
        return await client.compare(repo.owner, repo.name, release.previous_tag, release.tag)
    if release.published_at is not None:
        until = release.published_at
        since = until - timedelta(days=window_days)
        branch = (release.target_commitish or "").strip() or None
        return await client.list_commits(repo.owner, repo.name, since, until, branch)
    return await client.list_commits_for_ref(repo.owner, repo.name, release.tag)


async def collect_release_commits(
    client: GitHubClient,
    repo: RepoInfo,
    releases: list[ReleaseRef],
    window_days: Optional[int] = None,
) -> list[CommitInfo]:
    """Union of the commits in each release, newest first.

    A release whose lookup fails is skipped with a warning.
    """
    window = window_days if window_days is not None else settings.github.release_window_days
    by_sha: dict[str, CommitInfo] = {}
    for release in releases:
        try:
            commits = await _commits_for_release(client, repo, release, window)
        except GitHubError as e:
            logger.warning("Skipping release %s due to error: %s", release.tag, e)
            continue
        for commit in commits:
            by_sha.setdefault(commit.sha, commit)

    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        by_sha.values(),
        key=lambda c: c.authored_at or oldest,
        reverse=True,
    )


def filter_by_tags(
    commits: list[CommitInfo],
    tags: list[dict[str, str]],
    include: list[str],
    exclude: list[str],
) -> list[CommitInfo]:
    """Keep commits carrying an included tag and none of the excluded ones."""
    tags_by_sha: dict[str, list[str]] = {}
    for tag in tags:
        tags_by_sha.setdefault(tag["commit_sha"], []).append(tag["name"])

    kept = []
    for commit in commits:
        commit_tags = tags_by_sha.get(commit.sha, [])
        if include and not any(t in include for t in commit_tags):
            continue
        if exclude and any(t in exclude for t in commit_tags):
            continue
        kept.append(commit)
    return kept


async def filter_by_labels(
    client: GitHubClient,
    repo: RepoInfo,
    commits: list[CommitInfo],
    include: list[str],
    exclude: list[str],
    concurrency: Optional[int] = None,
) -> list[CommitInfo]:
    """Keep commits whose PR labels match the include/exclude lists."""
    semaphore = asyncio.Semaphore(concurrency or settings.github.concurrency)

    async def _labels(commit: CommitInfo) -> list[str]:
        async with semaphore:
            return await client.commit_labels(repo.owner, repo.name, commit.sha)

    all_labels = await asyncio.gather(*(_labels(c) for c in commits))

    kept = []
    for commit, labels in zip(commits, all_labels):
        if include and not any(label in include for label in labels):
            continue
        if exclude and any(label in exclude for label in labels):
            continue
        kept.append(commit)
    return kept


async def collect_commits(
    client: GitHubClient,
    repo: RepoInfo,
    filters: Optional[PatchNoteFilters] = None,
    now: Optional[datetime] = None,
) -> list[CommitInfo]:
    """Commits selected by a patch note's filters.

    Raises:
        GitHubError: The commit listing itself failed
    """
    filters = filters or PatchNoteFilters()

    if filters.mode == "release" and filters.releases:
        commits = await collect_release_commits(client, repo, filters.releases)
    else:
        if filters.mode == "custom" and filters.custom_range is not None:
            since, until = filters.custom_range.since, filters.custom_range.until
        else:
            since, until = date_range(filters.preset, now)
        commits = await client.list_commits(repo.owner, repo.name, since, until, repo.branch)

    if filters.include_tags or filters.exclude_tags:
        tags = await client.list_tags(repo.owner, repo.name)
        commits = filter_by_tags(commits, tags, filters.include_tags, filters.exclude_tags)

    if filters.include_labels or filters.exclude_labels:
        commits = await filter_by_labels(
            client, repo, commits, filters.include_labels, filters.exclude_labels
        )

    logger.info("Collected %d commits for %s (%s)", len(commits), repo.full_name, filters.mode)
    return commits
