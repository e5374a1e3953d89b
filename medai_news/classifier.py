from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .providers import RateLimiter, TextProvider, provider_strategies
from .strategies import Strategy, run_chain

DEFAULT_CATEGORY = "Research"

# Ordered: the first matching pattern wins.
CATEGORY_RULES: List[Tuple[str, "re.Pattern[str]"]] = [
    ("Diagnostics", re.compile(r"diagnos|detect|screen|identif", re.I)),
    ("Medical Imaging", re.compile(r"imag|scan|x-ray|\bmri\b|\bct\b|radiolog", re.I)),
    ("Surgery", re.compile(r"surg|operat|robot", re.I)),
    ("Drug Discovery", re.compile(r"drug|pharmac|compound|molecul|discover", re.I)),
    ("Genomics", re.compile(r"genom|\bdna\b|\bgenes?\b|sequenc", re.I)),
    ("Patient Care", re.compile(r"patient|\bcare\b|treatment|therap", re.I)),
    ("Clinical Trials", re.compile(r"trial|clinic|study", re.I)),
    ("Telemedicine", re.compile(r"telemed|remote|virtual|digital health", re.I)),
]

CATEGORIES: List[str] = [name for name, _ in CATEGORY_RULES] + [DEFAULT_CATEGORY]


def categorize_by_rules(text: str) -> str:
    """Deterministic keyword classification; never empty."""
    for name, pattern in CATEGORY_RULES:
        if pattern.search(text or ""):
            return name
    return DEFAULT_CATEGORY


def match_category(reply: Optional[str], categories: Sequence[str] = CATEGORIES) -> Optional[str]:
    """Map a free-text model reply onto the closed set, or None."""
    if not reply:
        return None
    cleaned = reply.strip().strip(".\"'`*").strip().lower()
    for c in categories:
        if cleaned == c.lower():
            return c
    # Tolerate "Category: Surgery" style replies, longest name first so
    # "Medical Imaging" is not shadowed by a shorter substring.
    for c in sorted(categories, key=len, reverse=True):
        if re.search(rf"(?<!\w){re.escape(c.lower())}(?!\w)", cleaned):
            return c
    return None


def classification_prompt(title: str, description: str, categories: Sequence[str] = CATEGORIES) -> str:
    return (
        "You classify medical AI news. Choose exactly ONE category from this list and "
        "reply with the category name only, nothing else:\n"
        + "\n".join(f"- {c}" for c in categories)
        + f"\n\nTitle: {title}\nDescription: {description[:500]}\n\nCategory:"
    )


@dataclass(frozen=True)
class Classification:
    category: str
    strategy: str
    provider_failures: int = 0


class Classifier:
    """Single category per item: providers first, keyword rules as the floor."""

    def __init__(self, providers: Sequence[TextProvider] = (), limiter: Optional[RateLimiter] = None) -> None:
        self._limiter = limiter or RateLimiter()
        self._providers = list(providers)

    def classify(self, title: str, description: str = "") -> Classification:
        def by_rules(prompt: str):
            category = categorize_by_rules(title)
            if category == DEFAULT_CATEGORY and description:
                category = categorize_by_rules(description)
            return category, True

        remote = provider_strategies(self._providers, self._limiter, min_chars=1, max_tokens=20)
        chain = [_closed_set(st) for st in remote]
        chain.append(Strategy(name="rules", attempt=by_rules))

        result = run_chain(chain, classification_prompt(title, description))
        return Classification(category=result.value or DEFAULT_CATEGORY,
                              strategy=result.strategy or "rules",
                              provider_failures=result.failures)


def _closed_set(st: Strategy) -> Strategy:
    """Accept a provider reply only when it names a category in the closed set."""
    def attempt(prompt: str):
        value, ok = st.attempt(prompt)
        category = match_category(value) if ok else None
        return category, category is not None

    return Strategy(name=st.name, attempt=attempt, available=st.available)
