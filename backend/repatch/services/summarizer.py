"""AI changelog summarizer.

Three structured calls against the configured LLM:
- summarize_commit: one sentence per commit from its diff and context
- assemble_changelog: Markdown patch notes from the per-commit summaries
- extract_highlights: up to three on-screen highlights for the video

Failures propagate; the pipeline decides how to degrade.
"""

import logging
from typing import Optional

from repatch.config import settings
from repatch.schemas.patch_note import (
    ChangelogOutput,
    CommitSummaryOutput,
    DetailedContext,
    Highlight,
    HighlightsOutput,
    PullRequestDetails,
    SummaryTemplate,
)
from repatch.services.llm import LLMAdapter, get_adapter

logger = logging.getLogger(__name__)

DIFF_PREVIEW_CHARS = 2000
MAX_HIGHLIGHTS = 3

DEFAULT_COMMIT_PROMPT = (
    "Write a single sentence (10-15 words) that clearly states what changed and why it matters. "
    'Use direct, jargon-light language and avoid filler phrases like "This commit" or "This update".'
)

DEFAULT_OVERALL_PROMPT = """Create Markdown patch notes for the provided repository and time period. Include:
- A short introductory paragraph for a balanced (technical & non-technical) audience.
- A "## Key Changes" section with one subsection per commit. Use concise headings derived from commit messages and summarize the impact in 2 sentences max.
- A "## Stats" section containing bullet points for total commits, additions, and deletions.
Keep the tone clear and confident. Avoid marketing fluff."""

HIGHLIGHTS_PROMPT = """From the patch notes below for {repo_name}, pick the {limit} most important changes for a short video summary.
For each, give a title of at most 6 words and a one-sentence description a non-technical viewer understands.
Order them by importance. Return fewer if the notes contain fewer meaningful changes.

Patch notes:
{text}"""


def _first_line(text: str) -> str:
    return text.split("\n")[0]


def resolve_template(template: Optional[SummaryTemplate]) -> SummaryTemplate:
    """Fill unset or blank prompts with the defaults."""
    template = template or SummaryTemplate()
    return SummaryTemplate(
        name=template.name,
        commit_prompt=(template.commit_prompt or "").strip() or DEFAULT_COMMIT_PROMPT,
        overall_prompt=(template.overall_prompt or "").strip() or DEFAULT_OVERALL_PROMPT,
        example_input=(template.example_input or "").strip() or None,
        example_output=(template.example_output or "").strip() or None,
    )


def commit_context(
    message: str,
    additions: int,
    deletions: int,
    authors: Optional[list[str]] = None,
    pr: Optional[PullRequestDetails] = None,
    pr_number: Optional[int] = None,
) -> str:
    """Plain-text context block describing one commit."""
    lines = [
        f"Commit Message:\n{message}",
        f"Lines Added: {additions}\nLines Deleted: {deletions}",
    ]
    if authors:
        lines.append(f"Authors: {', '.join(authors)}")
    if pr is not None:
        pr_lines = [f"Pull Request #{pr_number}: {pr.title}" if pr_number else f"Pull Request: {pr.title}"]
        if pr.body:
            pr_lines.append(pr.body)
        for comment in pr.comments[:5]:
            pr_lines.append(f"- {comment.get('author', 'unknown')}: {comment.get('body', '')}")
        if pr.issue_number:
            pr_lines.append(f"Linked issue #{pr.issue_number}: {pr.issue_title or ''}")
        lines.append("\n".join(pr_lines))
    return "\n\n".join(lines)


class ChangelogSummarizer:
    """Structured AI summarization of commits into patch notes."""

    def __init__(
        self,
        adapter: Optional[LLMAdapter] = None,
        model_id: Optional[str] = None,
        max_retries: Optional[int] = None,
    ):
        self.model_id = model_id or settings.models.summarizer_llm
        self._adapter = adapter
        self.max_retries = max_retries or settings.pipeline.retry_max_attempts

    @property
    def adapter(self) -> LLMAdapter:
        if self._adapter is None:
            self._adapter = get_adapter(self.model_id)
        return self._adapter

    async def summarize_commit(
        self, diff: str, context: str, template: Optional[SummaryTemplate] = None
    ) -> str:
        """One-sentence summary of a commit."""
        prompts = resolve_template(template)
        prompt = (
            f"{prompts.commit_prompt}\n\n{context}\n\n"
            f"Diff Preview (first {DIFF_PREVIEW_CHARS} characters):\n{diff[:DIFF_PREVIEW_CHARS]}\n\n"
            "Respond with a single sentence."
        )
        result = await self.adapter.generate_text(
            prompt, CommitSummaryOutput, temperature=0.3, max_retries=self.max_retries
        )
        return result.summary.strip()

    async def assemble_changelog(
        self,
        summaries: list[DetailedContext],
        template: Optional[SummaryTemplate] = None,
        *,
        repo_name: str = "",
        period: str = "",
        total_commits: Optional[int] = None,
        additions: Optional[int] = None,
        deletions: Optional[int] = None,
    ) -> str:
        """Markdown patch notes from per-commit summaries."""
        prompts = resolve_template(template)
        summaries_text = "\n\n".join(
            f"{i}. Commit: {_first_line(s.message)}\nSummary: {s.context}"
            for i, s in enumerate(summaries, start=1)
        )
        prompt = (
            f"{prompts.overall_prompt}\n\n"
            f"Repository: {repo_name}\n"
            f"Time Period: {period}\n"
            f"Total Commits: {total_commits if total_commits is not None else len(summaries)}\n"
            f"Total Additions: {additions if additions is not None else sum(s.additions for s in summaries)}\n"
            f"Total Deletions: {deletions if deletions is not None else sum(s.deletions for s in summaries)}\n\n"
            f"Commit Summaries:\n{summaries_text}"
        )
        if prompts.example_input and prompts.example_output:
            prompt = (
                f"Example Input:\n{prompts.example_input}\n\n"
                f"Example Output:\n{prompts.example_output}\n\n{prompt}"
            )

        result = await self.adapter.generate_text(
            prompt, ChangelogOutput, temperature=0.5, max_retries=self.max_retries
        )
        markdown = result.markdown.strip()
        if not markdown:
            raise ValueError("Summarizer returned an empty changelog")
        return markdown

    async def extract_highlights(self, text: str, repo_name: str, limit: int = MAX_HIGHLIGHTS) -> list[Highlight]:
        """Up to ``limit`` highlights for the video's on-screen summary."""
        limit = min(limit, MAX_HIGHLIGHTS)
        prompt = HIGHLIGHTS_PROMPT.format(repo_name=repo_name or "the repository", limit=limit, text=text)
        result = await self.adapter.generate_text(
            prompt, HighlightsOutput, temperature=0.3, max_retries=self.max_retries
        )
        highlights = [
            h for h in result.highlights if h.title.strip() and h.description.strip()
        ]
        return highlights[:limit]
