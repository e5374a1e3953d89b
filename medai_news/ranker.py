"""Relevance scoring.

Additive, deterministic signals over title + description:
- AI/ML vocabulary (+5)
- topic-domain vocabulary (+4, configurable per deployment)
- primary-source rigor hints (+2)
- promotional/opinion hints (-3)
- already resolved to a publisher rather than the aggregator (+1)
- recency bonus max(0, W - age_days)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from .dedup import deduplicate, rank_key
from .models import CandidateItem

AI_WEIGHT = 5.0
DOMAIN_WEIGHT = 4.0
RIGOR_WEIGHT = 2.0
PROMO_PENALTY = -3.0
PUBLISHER_BONUS = 1.0


def compile_terms(terms: Iterable[str]) -> Optional["re.Pattern[str]"]:
    """
    Build one case-insensitive matcher for a term list.
    "term" matches a whole word/phrase; "stem*" matches any word starting with stem.
    """
    parts = []
    for t in terms:
        t = (t or "").strip().lower()
        if not t:
            continue
        if t.endswith("*"):
            parts.append(rf"(?<!\w){re.escape(t[:-1])}\w*")
        else:
            parts.append(rf"(?<!\w){re.escape(t)}(?!\w)")
    if not parts:
        return None
    return re.compile("|".join(parts), re.I)


@dataclass(frozen=True)
class TermSets:
    ai: Optional["re.Pattern[str]"]
    domain: Optional["re.Pattern[str]"]
    rigor: Optional["re.Pattern[str]"]
    promo: Optional["re.Pattern[str]"]

    @classmethod
    def build(cls, ai: Sequence[str], domain: Sequence[str],
              rigor: Sequence[str], promo: Sequence[str]) -> "TermSets":
        return cls(compile_terms(ai), compile_terms(domain), compile_terms(rigor), compile_terms(promo))


def _hit(pattern: Optional["re.Pattern[str]"], text: str) -> bool:
    return bool(pattern and pattern.search(text))


def age_days(published_at: datetime, now: datetime) -> float:
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    return max(0.0, (now - published_at).total_seconds() / 86400.0)


def score(
    item: CandidateItem,
    terms: TermSets,
    *,
    now: datetime,
    freshness_days: float,
    is_aggregator: Callable[[str], bool] = lambda url: False,
) -> float:
    text = f"{item.title} {item.description}"
    total = 0.0
    if _hit(terms.ai, text):
        total += AI_WEIGHT
    if _hit(terms.domain, text):
        total += DOMAIN_WEIGHT
    if _hit(terms.rigor, text):
        total += RIGOR_WEIGHT
    if _hit(terms.promo, text):
        total += PROMO_PENALTY
    if item.canonical_url and not is_aggregator(item.canonical_url):
        total += PUBLISHER_BONUS
    total += max(0.0, freshness_days - age_days(item.published_at, now))
    return total


def rank(
    candidates: Iterable[CandidateItem],
    terms: TermSets,
    *,
    freshness_days: float,
    now: Optional[datetime] = None,
    is_aggregator: Callable[[str], bool] = lambda url: False,
) -> List[CandidateItem]:
    """Score, drop in-batch duplicates by canonical URL, and sort best first.

    Ties on score go to the more recent item. Python's sort is stable, so the
    result never depends on the arrival order of equal candidates beyond first-seen.
    """
    now = now or datetime.now(timezone.utc)
    scored = [
        replace(c, relevance_score=score(c, terms, now=now, freshness_days=freshness_days,
                                         is_aggregator=is_aggregator))
        for c in candidates
    ]
    unique = deduplicate(scored)
    unique.sort(key=rank_key, reverse=True)
    return unique
