from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .providers import RateLimiter, TextProvider, provider_strategies
from .strategies import Strategy, run_chain

MIN_GENERATED_CHARS = 50
MIN_BODY_FOR_CONTENT = 200


@dataclass
class SummarizeOptions:
    max_input_chars: int = 4000
    summary_max_tokens: int = 200
    content_max_tokens: int = 600
    min_generated_chars: int = MIN_GENERATED_CHARS
    min_body_for_content: int = MIN_BODY_FOR_CONTENT


@dataclass(frozen=True)
class SummaryResult:
    summary: str
    content: str
    summary_strategy: str = "template"
    content_strategy: str = "template"
    provider_failures: int = 0


def _truncate(s: str, limit: int) -> str:
    if limit <= 0 or len(s) <= limit:
        return s
    return s[:limit]


def summary_prompt(title: str, category: str, source: str, body: str) -> str:
    return (
        "You are a medical AI news editor. Write a compelling 2-3 sentence summary of this story.\n\n"
        f'Title: "{title}"\n'
        f"Category: {category}\n"
        f"Source: {source}\n"
        f"Excerpt: {body}\n\n"
        "Be specific and concrete, mention elements from the title and excerpt, avoid generic "
        "phrases. Write ONLY the summary, no preamble."
    )


def content_prompt(title: str, category: str, source: str, body: str) -> str:
    return (
        "You are a medical AI news editor. Write 3 well-developed, factual paragraphs about this story, "
        "staying close to the excerpt.\n\n"
        f'Title: "{title}"\n'
        f"Category: {category}\n"
        f"Source: {source}\n"
        f"Excerpt: {body}\n\n"
        "No preamble, no headings."
    )


def fallback_summary(title: str, category: str, source: str) -> str:
    return (
        f"{source} reports: {title}. The story covers a development in AI-assisted "
        f"{category.lower()}, part of the wider shift toward machine learning in medicine and healthcare."
    )


def fallback_content(title: str, category: str, source: str) -> str:
    topic = category.lower()
    return (
        f"{title}. {source} has reported on this development in {topic}, "
        "and what it could mean for clinicians, researchers and patients.\n\n"
        "The story reflects the growing role of artificial intelligence in healthcare delivery and "
        "medical research, where models are increasingly used to support decisions rather than replace them.\n\n"
        f"As AI tools in {topic} mature, independent validation and regulatory review will decide how "
        f"quickly they reach everyday practice. Read the full report at {source} for details."
    )


class Summarizer:
    """
    Short summary + longer content per item.

    Providers are tried in order with a single attempt each; the deterministic
    templates (and the extracted page body, for content) guarantee non-empty output.
    """

    def __init__(
        self,
        providers: Sequence[TextProvider] = (),
        limiter: Optional[RateLimiter] = None,
        options: Optional[SummarizeOptions] = None,
    ) -> None:
        self._providers = list(providers)
        self._limiter = limiter or RateLimiter()
        self.options = options or SummarizeOptions()

    def _chain(self, max_tokens: int, fallback: Strategy) -> List[Strategy]:
        remote = provider_strategies(self._providers, self._limiter,
                                     min_chars=self.options.min_generated_chars,
                                     max_tokens=max_tokens)
        return remote + [fallback]

    def summarize(self, *, title: str, category: str, source: str, body: str = "") -> SummaryResult:
        opts = self.options
        excerpt = _truncate(body or "", opts.max_input_chars)

        summary = run_chain(
            self._chain(opts.summary_max_tokens, Strategy(
                name="template",
                attempt=lambda prompt: (fallback_summary(title, category, source), True),
            )),
            summary_prompt(title, category, source, excerpt),
        )

        def body_or_template(prompt: str):
            if len(excerpt.strip()) >= opts.min_body_for_content:
                return excerpt.strip(), True
            return fallback_content(title, category, source), True

        content = run_chain(
            self._chain(opts.content_max_tokens, Strategy(name="body", attempt=body_or_template)),
            content_prompt(title, category, source, excerpt),
        )

        return SummaryResult(
            summary=summary.value or fallback_summary(title, category, source),
            content=content.value or fallback_content(title, category, source),
            summary_strategy=summary.strategy or "template",
            content_strategy=content.strategy or "body",
            provider_failures=summary.failures + content.failures,
        )
