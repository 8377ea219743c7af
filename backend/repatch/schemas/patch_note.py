"""Pydantic models for patch note generation: filters, stats, summaries, highlights."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

TimePreset = Literal["1day", "1week", "1month"]
FilterMode = Literal["preset", "custom", "release"]


class CustomRange(BaseModel):
    since: datetime
    until: datetime


class ReleaseRef(BaseModel):
    """A release selected as a commit window."""

    tag: str
    name: Optional[str] = None
    previous_tag: Optional[str] = None
    published_at: Optional[datetime] = None
    target_commitish: Optional[str] = None

    @field_validator("tag")
    @classmethod
    def strip_tag(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Release tag must not be empty")
        return v


def _clean_tokens(values: Optional[list[str]]) -> list[str]:
    """Trim, drop blanks, de-duplicate keeping order."""
    seen: dict[str, None] = {}
    for value in values or []:
        token = value.strip()
        if token:
            seen.setdefault(token, None)
    return list(seen)


class PatchNoteFilters(BaseModel):
    """Commit window selection.

    Exactly one of preset, custom range or releases applies, chosen by mode.
    Tag and label filters narrow the window further.
    """

    mode: FilterMode = "preset"
    preset: Optional[TimePreset] = None
    custom_range: Optional[CustomRange] = None
    releases: list[ReleaseRef] = Field(default_factory=list)
    include_tags: list[str] = Field(default_factory=list)
    exclude_tags: list[str] = Field(default_factory=list)
    include_labels: list[str] = Field(default_factory=list)
    exclude_labels: list[str] = Field(default_factory=list)

    @field_validator("include_tags", "exclude_tags", "include_labels", "exclude_labels", mode="before")
    @classmethod
    def clean_tokens(cls, v):
        return _clean_tokens(v)

    @model_validator(mode="after")
    def check_mode(self) -> "PatchNoteFilters":
        for label, include, exclude in (
            ("Label", self.include_labels, self.exclude_labels),
            ("Tag", self.include_tags, self.exclude_tags),
        ):
            conflict = next((token for token in include if token in exclude), None)
            if conflict:
                raise ValueError(f'{label} "{conflict}" cannot be both included and excluded.')

        if self.mode == "preset":
            if self.preset is None:
                self.preset = "1week"
        elif self.mode == "custom":
            if self.releases:
                raise ValueError("Choose either a date range or specific releases.")
            if self.custom_range is None:
                raise ValueError("Custom ranges require both a start and end date.")
            if self.custom_range.since >= self.custom_range.until:
                raise ValueError("The end date must be after the start date for custom ranges.")
        elif self.mode == "release":
            if self.custom_range is not None or self.preset is not None:
                raise ValueError("Choose either a date range or specific releases.")
            unique: dict[str, ReleaseRef] = {}
            for release in self.releases:
                unique.setdefault(release.tag, release)
            if not unique:
                raise ValueError("Select at least one release to generate patch notes from.")
            self.releases = list(unique.values())
        return self


class RepoInfo(BaseModel):
    """Repository a patch note is generated for."""

    owner: str
    name: str
    branch: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"

    @classmethod
    def parse(cls, value: str, branch: Optional[str] = None) -> "RepoInfo":
        """Accept "owner/repo" or a github.com URL."""
        text = value.strip()
        if "github.com/" in text:
            text = text.split("github.com/", 1)[1]
        parts = [p for p in text.split("/") if p]
        if len(parts) < 2:
            raise ValueError(f"Expected owner/repo, got {value!r}")
        name = parts[1].split("?")[0].split("#")[0].removesuffix(".git")
        return cls(owner=parts[0], name=name, branch=branch)


class CommitInfo(BaseModel):
    """One commit from the history service, flattened."""

    sha: str
    message: str
    author_name: str = ""
    author_login: Optional[str] = None
    authored_at: Optional[datetime] = None

    @property
    def contributor(self) -> str:
        return f"@{self.author_login}" if self.author_login else self.author_name

    @property
    def title(self) -> str:
        return self.message.split("\n")[0]


class RepoStats(BaseModel):
    """Commit and contributor counts for one filter window."""

    commits: int = 0
    additions: int = 0
    deletions: int = 0
    contributors: list[str] = Field(default_factory=list)
    commit_messages: list[str] = Field(default_factory=list)


class PullRequestDetails(BaseModel):
    title: str = ""
    body: Optional[str] = None
    comments: list[dict] = Field(default_factory=list)  # [{author, body}]
    issue_number: Optional[int] = None
    issue_title: Optional[str] = None
    issue_body: Optional[str] = None


class DetailedContext(BaseModel):
    """AI summary of one commit, stored in ai_detailed_contexts."""

    sha: str = ""
    message: str
    context: str
    additions: int = 0
    deletions: int = 0
    authors: list[str] = Field(default_factory=list)
    pr_number: Optional[int] = None


class Highlight(BaseModel):
    """One on-screen video highlight."""

    title: str
    description: str


class SummaryTemplate(BaseModel):
    """User-supplied prompt overrides for the summarizer."""

    name: Optional[str] = None
    commit_prompt: Optional[str] = None
    overall_prompt: Optional[str] = None
    example_input: Optional[str] = None
    example_output: Optional[str] = None


# ---------------------------------------------------------------------------
# Structured LLM outputs
# ---------------------------------------------------------------------------

class CommitSummaryOutput(BaseModel):
    summary: str = Field(description="Single sentence describing the change and why it matters")


class ChangelogOutput(BaseModel):
    markdown: str = Field(description="Complete Markdown patch notes")


class HighlightsOutput(BaseModel):
    highlights: list[Highlight] = Field(
        default_factory=list,
        description="Up to three most important changes, each with a short title and one-sentence description",
    )
