"""Boilerplate content and filter window labels."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from repatch.pipeline.content import boilerplate_content, filter_detail_label, filter_summary
from repatch.schemas.patch_note import PatchNoteFilters, RepoStats


def _stats(count: int) -> RepoStats:
    return RepoStats(
        commits=count,
        additions=1234,
        deletions=56,
        contributors=["@octocat", "@hubot"],
        commit_messages=[f"Change {i}\n\nbody" for i in range(count)],
    )


def test_boilerplate_sections():
    content = boilerplate_content("acme/widgets", PatchNoteFilters(), _stats(3))

    assert content.startswith("# Last Week Update for acme/widgets")
    assert "**3** commits" in content
    assert "**2** active contributors" in content
    assert "**1,234** lines added" in content
    assert "- Change 0\n- Change 1\n- Change 2" in content
    assert "@octocat, @hubot" in content
    assert "more commits" not in content
    assert content.rstrip().endswith("*Note: This is an auto-generated summary.*")


def test_boilerplate_truncates_recent_commits():
    content = boilerplate_content("acme/widgets", None, _stats(13))

    assert "- Change 9" in content
    assert "- Change 10" not in content
    assert "_...and 3 more commits_" in content


def test_boilerplate_without_commits():
    content = boilerplate_content("acme/widgets", None, RepoStats())
    assert "No commits were made during this period." in content


def test_custom_range_labels():
    filters = PatchNoteFilters(
        mode="custom",
        custom_range={"since": datetime(2024, 3, 1), "until": datetime(2024, 3, 15)},
    )
    assert filter_summary(filters) == "Mar 1, 2024 → Mar 15, 2024"
    assert filter_detail_label(filters) == "Custom Range (Mar 1, 2024 → Mar 15, 2024)"
    assert boilerplate_content("acme/widgets", filters, RepoStats()).startswith("# Custom Range Update")


def test_release_labels():
    filters = PatchNoteFilters(mode="release", releases=[{"tag": "v1.2.0", "name": "Spring"}, {"tag": "v1.3.0"}])
    assert filter_summary(filters) == "Spring, v1.3.0"
    assert filter_detail_label(filters) == "Release Selection (Spring, v1.3.0)"


def test_preset_defaults_to_week():
    assert PatchNoteFilters().preset == "1week"
    assert filter_summary(PatchNoteFilters(preset="1day")) == "Last 24 Hours"


def test_release_selection_is_deduplicated():
    filters = PatchNoteFilters(mode="release", releases=[{"tag": "v1"}, {"tag": " v1 "}, {"tag": "v2"}])
    assert [r.tag for r in filters.releases] == ["v1", "v2"]


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"mode": "custom"}, "require both a start and end date"),
        (
            {"mode": "custom", "custom_range": {"since": datetime(2024, 3, 2), "until": datetime(2024, 3, 1)}},
            "end date must be after",
        ),
        ({"mode": "release"}, "at least one release"),
        ({"include_tags": ["v1"], "exclude_tags": [" v1"]}, 'Tag "v1" cannot be both'),
    ],
)
def test_invalid_filters(kwargs, message):
    with pytest.raises(ValidationError, match=message):
        PatchNoteFilters(**kwargs)
