from __future__ import annotations

from typing import Any, Callable, Dict

from .exceptions import ParseError
from .models import CandidateItem


def to_candidate(entry: Dict[str, Any], canonicalize: Callable[[str], str]) -> CandidateItem:
    """
    Convert a parsed entry dict into a CandidateItem.
    Requires:
    - title (non-empty)
    - link (non-empty)
    - published_at (datetime; the parser already defaulted it)
    Optional:
    - description, source, feed_url, image_url
    """
    title = (entry.get("title") or "").strip()
    link = (entry.get("link") or "").strip()
    published_at = entry.get("published_at")

    # Parser should already have filtered, but re-check
    if not title or not link or published_at is None:
        raise ParseError("Entry lacks required fields for CandidateItem: title/link/published_at")

    return CandidateItem(
        title=title,
        raw_url=link,
        canonical_url=canonicalize(link),
        reported_source=entry.get("source") or "unknown",
        published_at=published_at,
        description=entry.get("description") or "",
        feed_url=entry.get("feed_url"),
        feed_image_url=entry.get("image_url") or "",
    )
