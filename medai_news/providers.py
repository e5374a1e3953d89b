from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from .config import ProviderSettings
from .exceptions import ProviderError
from .strategies import Strategy

logger = logging.getLogger(__name__)


class TextProvider(Protocol):
    name: str
    requests_per_minute: int

    def generate(self, prompt: str, *, max_tokens: int = 400) -> str:  # pragma: no cover - interface
        ...


class RateLimiter:
    """
    Process-local, advisory request budget per provider.

    Counters reset together once `window_sec` has elapsed since the last reset.
    Owned by one pipeline run; pass it to whatever needs to spend budget.
    """

    def __init__(self, window_sec: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._window = window_sec
        self._clock = clock
        self._counts: Dict[str, int] = {}
        self._reset_at = clock()
        self._lock = threading.Lock()

    def _maybe_reset(self) -> None:
        if self._clock() - self._reset_at >= self._window:
            self._counts.clear()
            self._reset_at = self._clock()

    def allows(self, name: str, limit: int) -> bool:
        with self._lock:
            self._maybe_reset()
            return self._counts.get(name, 0) < limit

    def acquire(self, name: str, limit: int) -> bool:
        """Spend one request of `name`'s budget; False if it is exhausted."""
        with self._lock:
            self._maybe_reset()
            used = self._counts.get(name, 0)
            if used >= limit:
                return False
            self._counts[name] = used + 1
            return True

    def usage(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


class OpenAIChatProvider:
    """OpenAI or any OpenAI-compatible chat endpoint (Groq, Together, OpenRouter, xAI)."""

    def __init__(self, *, name: str, api_key: str, model: str, base_url: Optional[str] = None,
                 timeout_sec: float = 15.0, requests_per_minute: int = 60) -> None:
        try:
            from openai import OpenAI  # type: ignore
        except Exception as e:  # pragma: no cover - optional dep
            raise RuntimeError("openai package is required for chat providers. Install with `pip install openai`.") from e
        if not api_key:
            raise RuntimeError(f"{name}: API key not set.")
        self.name = name
        self.requests_per_minute = requests_per_minute
        self._client = OpenAI(api_key=api_key, base_url=base_url) if base_url else OpenAI(api_key=api_key)
        self._model = model
        self._timeout = timeout_sec

    def generate(self, prompt: str, *, max_tokens: int = 400) -> str:
        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.7,
                max_tokens=max_tokens,
                timeout=self._timeout,
            )
        except Exception as e:
            raise ProviderError(f"{self.name}: {e}") from e
        content = resp.choices[0].message.content if resp and resp.choices else None
        return (content or "").strip()


class GeminiProvider:
    def __init__(self, *, api_key: str, model: str = "gemini-1.5-flash",
                 timeout_sec: float = 15.0, requests_per_minute: int = 60) -> None:
        try:
            import google.generativeai as genai  # type: ignore
        except Exception as e:  # pragma: no cover - optional dep
            raise RuntimeError("google-generativeai package is required for Gemini. Install with `pip install google-generativeai`.") from e
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY (or GOOGLE_API_KEY) not set.")
        genai.configure(api_key=api_key)
        self.name = "gemini"
        self.requests_per_minute = requests_per_minute
        self._model_name = model
        self._timeout = timeout_sec
        self._genai = genai

    def generate(self, prompt: str, *, max_tokens: int = 400) -> str:
        try:
            model = self._genai.GenerativeModel(self._model_name)
            resp = model.generate_content(
                prompt,
                generation_config={"max_output_tokens": max_tokens},
                request_options={"timeout": self._timeout},
            )
        except Exception as e:
            raise ProviderError(f"gemini: {e}") from e
        try:
            text = getattr(resp, "text", None)
        except ValueError:
            # .text raises when the candidate was blocked or has no parts
            text = None
        return str(text or "").strip()


def build_providers(settings: Iterable[ProviderSettings], *, timeout_sec: float = 15.0) -> List[TextProvider]:
    """Instantiate configured providers; ones that cannot be built are logged and skipped."""
    out: List[TextProvider] = []
    for s in settings:
        try:
            if s.provider == "gemini":
                out.append(GeminiProvider(api_key=s.api_key, model=s.model, timeout_sec=timeout_sec,
                                          requests_per_minute=s.requests_per_minute))
            else:
                out.append(OpenAIChatProvider(name=s.provider, api_key=s.api_key, model=s.model,
                                              base_url=s.base_url, timeout_sec=timeout_sec,
                                              requests_per_minute=s.requests_per_minute))
        except RuntimeError as e:
            logger.warning("Provider %s disabled: %s", s.provider, e)
    if out:
        logger.info("%d text provider(s) ready: %s", len(out), ", ".join(p.name for p in out))
    else:
        logger.info("No text providers configured; using deterministic fallbacks")
    return out


def provider_strategies(providers: Iterable[TextProvider], limiter: RateLimiter, *,
                        min_chars: int, max_tokens: int) -> List[Strategy]:
    """Wrap providers as fallback strategies for a single prompt.

    Each strategy's capability check is the rate budget; a reply shorter than
    `min_chars` counts as a failure.
    """

    def make(p: TextProvider) -> Strategy:
        def attempt(prompt: str):
            if not limiter.acquire(p.name, p.requests_per_minute):
                logger.debug("%s rate budget spent, trying next", p.name)
                return None, False
            try:
                text = p.generate(prompt, max_tokens=max_tokens)
            except ProviderError as e:
                logger.warning("Provider failed: %s", e)
                return None, False
            if len(text) < min_chars:
                return None, False
            return text, True

        return Strategy(name=p.name, attempt=attempt,
                        available=lambda: limiter.allows(p.name, p.requests_per_minute))

    return [make(p) for p in providers]
