from __future__ import annotations

from typing import Dict, Iterable, List

from .models import CandidateItem


def rank_key(it: CandidateItem):
    """Sort key shared by dedup and ranking: score first, then recency."""
    return (it.relevance_score, it.published_at.timestamp())


def deduplicate(items: Iterable[CandidateItem]) -> List[CandidateItem]:
    """
    Remove duplicates by canonical URL (falling back to the raw link).
    The highest-scoring, then most recent, representative survives; on a full tie
    the first occurrence wins. First-seen order of the surviving keys is preserved.
    """
    best: Dict[str, CandidateItem] = {}
    order: List[str] = []

    for it in items:
        key = it.canonical_url or it.raw_url
        prev = best.get(key)
        if prev is None:
            best[key] = it
            order.append(key)
        elif rank_key(it) > rank_key(prev):
            best[key] = it
    return [best[k] for k in order]
