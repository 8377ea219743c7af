"""Deterministic patch note content built from stats alone (no AI)."""

from datetime import datetime
from typing import Optional

from repatch.schemas.patch_note import PatchNoteFilters, RepoStats, TimePreset

PRESET_LABELS: dict[str, str] = {
    "1day": "Last 24 Hours",
    "1week": "Last Week",
    "1month": "Last Month",
}


def preset_label(preset: Optional[TimePreset]) -> str:
    return PRESET_LABELS.get(preset or "1week", PRESET_LABELS["1week"])


def _format_date(value: datetime) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def filter_summary(filters: Optional[PatchNoteFilters]) -> str:
    """Short human label for a filter window."""
    if filters is None:
        return preset_label("1week")
    if filters.mode == "preset":
        return preset_label(filters.preset)
    if filters.mode == "custom":
        if filters.custom_range is None:
            return "Custom Range"
        rng = filters.custom_range
        return f"{_format_date(rng.since)} → {_format_date(rng.until)}"
    if filters.releases:
        return ", ".join(r.name or r.tag for r in filters.releases)
    return "Release Selection"


def filter_detail_label(filters: Optional[PatchNoteFilters]) -> str:
    if filters is None:
        return preset_label("1week")
    label = filter_summary(filters)
    if filters.mode == "custom":
        return f"Custom Range ({label})"
    if filters.mode == "release":
        return f"Release Selection ({label})"
    return label


def filter_descriptor(filters: Optional[PatchNoteFilters]) -> str:
    if filters is not None and filters.mode == "release":
        return "Release Selection"
    if filters is not None and filters.mode == "custom":
        return "Custom Range"
    return preset_label(filters.preset if filters else None)


def boilerplate_content(
    repo_name: str,
    filters: Optional[PatchNoteFilters],
    stats: RepoStats,
    recent_limit: int = 10,
) -> str:
    """Markdown summary of a filter window from stats only."""
    if stats.commits > 0:
        highlights = (
            f"The team has been actively developing with {stats.commits} commits during this timeframe.\n"
            "Key areas of focus include ongoing development and improvements across the codebase."
        )
    else:
        highlights = "No commits were made during this period."

    titles = [msg.split("\n")[0] for msg in stats.commit_messages[:recent_limit]]
    recent = "\n".join(f"- {title}" for title in titles)
    contributors = ", ".join(stats.contributors)
    more = len(stats.commit_messages) - recent_limit
    if more > 0:
        recent += f"\n\n_...and {more} more commits_"

    return f"""# {filter_descriptor(filters)} Update for {repo_name}

## 📊 Overview

This summary covers changes made to the repository for {filter_detail_label(filters)}.

**Period Statistics:**
- **{stats.commits}** commits
- **{len(stats.contributors)}** active contributors
- **{stats.additions:,}** lines added
- **{stats.deletions:,}** lines removed

## 🚀 Highlights

{highlights}

## 📝 Recent Commits

{recent}

## 👥 Contributors

Thanks to all contributors who made this release possible:
{contributors}

---

*Note: This is an auto-generated summary.*
"""
