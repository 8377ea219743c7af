"""GitHub REST API client for commit history.

Provides:
- Paginated commit listing for a branch and date range
- Compare (release-to-release) and per-ref commit listing
- Per-commit stats, diff, PR details and PR labels

Lookups that only enrich a commit (stats, diff, PR details, labels) degrade
to an empty value on error; listing calls raise GitHubError.

Usage:
    from repatch.services.github_client import get_github_client

    client = get_github_client()
    commits = await client.list_commits("owner", "repo", since=..., until=...)
"""

import logging
import re
from datetime import datetime
from typing import Any, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from repatch.config import settings
from repatch.schemas.patch_note import CommitInfo, PullRequestDetails

logger = logging.getLogger(__name__)

DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"
_LINKED_ISSUE_RE = re.compile(r"#(\d+)|closes #(\d+)|fixes #(\d+)", re.IGNORECASE)


class GitHubError(Exception):
    """A commit history request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def _is_retriable(exc: BaseException) -> bool:
    """Transport errors and 5xx responses are worth another attempt."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_commit(data: dict[str, Any]) -> CommitInfo:
    """Flatten a GitHub commit object."""
    commit = data.get("commit") or {}
    author = commit.get("author") or {}
    login = (data.get("author") or {}).get("login")
    return CommitInfo(
        sha=data["sha"],
        message=commit.get("message") or "",
        author_name=author.get("name") or "",
        author_login=login,
        authored_at=author.get("date"),
    )


class GitHubClient:
    """Async client for the GitHub REST API."""

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str = "",
        per_page: int = 100,
        max_pages: int = 10,
        max_attempts: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.per_page = per_page
        self.max_pages = max_pages
        self.max_attempts = max_attempts
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers=headers,
                follow_redirects=True,
                timeout=httpx.Timeout(30.0, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def _get(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        accept: Optional[str] = None,
    ) -> httpx.Response:
        """GET with retries on transport errors and 5xx. Raises GitHubError."""
        headers = {"Accept": accept} if accept else None

        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
            retry=retry_if_exception(_is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> httpx.Response:
            response = await self.client.get(url, params=params, headers=headers)
            logger.debug("GET %s: HTTP %d", url, response.status_code)
            response.raise_for_status()
            return response

        try:
            return await _call()
        except httpx.HTTPStatusError as e:
            raise GitHubError(
                f"GitHub request failed: HTTP {e.response.status_code} for {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise GitHubError(f"GitHub unreachable: {e}") from e

    async def _get_paginated(self, url: str, params: dict[str, Any]) -> list[dict]:
        """Follow Link rel="next" up to max_pages."""
        items: list[dict] = []
        next_url: Optional[str] = url
        next_params: Optional[dict[str, Any]] = {**params, "per_page": self.per_page}
        pages = 0
        while next_url and pages < self.max_pages:
            response = await self._get(next_url, params=next_params)
            data = response.json()
            if not isinstance(data, list):
                raise GitHubError(f"Unexpected response shape for {url}")
            items.extend(data)
            pages += 1
            next_url = response.links.get("next", {}).get("url")
            # The next link already carries the query string
            next_params = None
        if next_url:
            logger.warning("Stopped paging %s after %d pages", url, pages)
        return items

    async def list_commits(
        self,
        owner: str,
        repo: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        branch: Optional[str] = None,
    ) -> list[CommitInfo]:
        """Commits on a branch (or the default branch) within a date range."""
        params: dict[str, Any] = {}
        if since is not None:
            params["since"] = _iso(since)
        if until is not None:
            params["until"] = _iso(until)
        if branch:
            params["sha"] = branch
        logger.info("Listing commits for %s/%s (branch=%s)", owner, repo, branch or "default")
        data = await self._get_paginated(f"/repos/{owner}/{repo}/commits", params)
        return [parse_commit(item) for item in data]

    async def list_commits_for_ref(self, owner: str, repo: str, ref: str) -> list[CommitInfo]:
        """First page of commits reachable from a tag or branch."""
        response = await self._get(
            f"/repos/{owner}/{repo}/commits", params={"sha": ref, "per_page": self.per_page}
        )
        data = response.json()
        return [parse_commit(item) for item in data] if isinstance(data, list) else []

    async def compare(self, owner: str, repo: str, base: str, head: str) -> list[CommitInfo]:
        """Commits between two refs."""
        response = await self._get(f"/repos/{owner}/{repo}/compare/{base}...{head}")
        data = response.json()
        commits = data.get("commits") if isinstance(data, dict) else None
        return [parse_commit(item) for item in commits or []]

    async def list_tags(self, owner: str, repo: str) -> list[dict[str, str]]:
        """Tags as [{name, commit_sha}]."""
        data = await self._get_paginated(f"/repos/{owner}/{repo}/tags", {})
        return [
            {"name": tag["name"], "commit_sha": (tag.get("commit") or {}).get("sha", "")}
            for tag in data
            if tag.get("name")
        ]

    async def commit_stats(self, owner: str, repo: str, sha: str) -> tuple[int, int]:
        """(additions, deletions) for one commit; zeros on error."""
        try:
            response = await self._get(f"/repos/{owner}/{repo}/commits/{sha}")
            stats = response.json().get("stats") or {}
            return int(stats.get("additions") or 0), int(stats.get("deletions") or 0)
        except (GitHubError, ValueError) as e:
            logger.debug("Stats unavailable for %s: %s", sha, e)
            return 0, 0

    async def commit_diff(self, owner: str, repo: str, sha: str) -> str:
        """Unified diff for one commit; empty string on error."""
        try:
            response = await self._get(f"/repos/{owner}/{repo}/commits/{sha}", accept=DIFF_MEDIA_TYPE)
            return response.text
        except GitHubError as e:
            logger.debug("Diff unavailable for %s: %s", sha, e)
            return ""

    async def pull_request_details(
        self, owner: str, repo: str, number: int
    ) -> Optional[PullRequestDetails]:
        """PR title/body, comments and linked issue; None on error."""
        try:
            pr = (await self._get(f"/repos/{owner}/{repo}/pulls/{number}")).json()
        except (GitHubError, ValueError) as e:
            logger.debug("PR #%d unavailable: %s", number, e)
            return None

        details = PullRequestDetails(title=pr.get("title") or "", body=pr.get("body"))

        try:
            comments = (await self._get(f"/repos/{owner}/{repo}/issues/{number}/comments")).json()
            details.comments = [
                {"author": (c.get("user") or {}).get("login") or "unknown", "body": c.get("body") or ""}
                for c in comments
            ]
        except (GitHubError, ValueError) as e:
            logger.debug("Comments unavailable for PR #%d: %s", number, e)

        match = _LINKED_ISSUE_RE.search(details.body or "")
        if match:
            issue_number = int(next(g for g in match.groups() if g))
            details.issue_number = issue_number
            try:
                issue = (await self._get(f"/repos/{owner}/{repo}/issues/{issue_number}")).json()
                details.issue_title = issue.get("title")
                details.issue_body = issue.get("body")
            except (GitHubError, ValueError) as e:
                logger.debug("Linked issue #%d unavailable: %s", issue_number, e)

        return details

    async def commit_labels(self, owner: str, repo: str, sha: str) -> list[str]:
        """Labels of PRs associated with a commit; empty on error."""
        try:
            pulls = (await self._get(f"/repos/{owner}/{repo}/commits/{sha}/pulls")).json()
        except (GitHubError, ValueError) as e:
            logger.debug("Labels unavailable for %s: %s", sha, e)
            return []
        labels: dict[str, None] = {}
        for pull in pulls if isinstance(pulls, list) else []:
            for label in pull.get("labels") or []:
                if label.get("name"):
                    labels.setdefault(label["name"], None)
        return list(labels)

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Module-level lazy singleton
# ---------------------------------------------------------------------------

_github_client: Optional[GitHubClient] = None


def get_github_client() -> GitHubClient:
    """Get or create the GitHubClient configured from settings."""
    global _github_client
    if _github_client is None:
        cfg = settings.github
        _github_client = GitHubClient(
            cfg.api_url,
            cfg.token,
            per_page=cfg.per_page,
            max_pages=cfg.max_pages,
            max_attempts=settings.pipeline.retry_max_attempts,
        )
    return _github_client


async def close_github_client() -> None:
    """Close and discard the singleton client."""
    global _github_client
    if _github_client is not None:
        await _github_client.close()
        _github_client = None
