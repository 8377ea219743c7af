"""Video highlights derived from assembled patch note content."""

import logging
from typing import Optional

from repatch.config import settings
from repatch.schemas.patch_note import Highlight
from repatch.services.summarizer import ChangelogSummarizer

logger = logging.getLogger(__name__)


def normalize_highlights(highlights: list[Highlight], limit: int) -> list[dict]:
    """Trimmed, de-duplicated {title, description} dicts, at most ``limit``."""
    seen: set[str] = set()
    result = []
    for h in highlights:
        title, description = h.title.strip(), h.description.strip()
        if not title or not description or title.lower() in seen:
            continue
        seen.add(title.lower())
        result.append({"title": title, "description": description})
        if len(result) >= limit:
            break
    return result


async def derive_highlights(
    summarizer: ChangelogSummarizer,
    content: str,
    repo_name: str,
    limit: Optional[int] = None,
) -> list[dict]:
    """Extract up to ``limit`` highlights. Raises whatever the summarizer raises."""
    limit = min(limit or settings.pipeline.max_highlights, 3)
    if not content.strip():
        return []
    highlights = await summarizer.extract_highlights(content, repo_name, limit)
    normalized = normalize_highlights(highlights, limit)
    logger.info("Derived %d video highlights for %s", len(normalized), repo_name)
    return normalized
