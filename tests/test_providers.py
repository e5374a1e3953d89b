from __future__ import annotations

from medai_news.exceptions import ProviderError
from medai_news.providers import RateLimiter, provider_strategies
from medai_news.strategies import run_chain

from conftest import StubProvider


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_rate_limiter_spends_and_resets_budget() -> None:
    clock = FakeClock()
    limiter = RateLimiter(window_sec=60, clock=clock)

    assert limiter.acquire("groq", 2)
    assert limiter.acquire("groq", 2)
    assert not limiter.acquire("groq", 2)
    assert not limiter.allows("groq", 2)
    assert limiter.allows("gemini", 2)

    clock.now = 61.0
    assert limiter.allows("groq", 2)
    assert limiter.usage() == {}


def test_provider_strategies_fall_through_in_order() -> None:
    long_text = "A detailed and specific summary of the reported medical AI development."
    first = StubProvider("first", replies=[ProviderError("first: 500")])
    second = StubProvider("second", replies=["too short"])
    third = StubProvider("third", replies=[long_text])

    chain = provider_strategies([first, second, third], RateLimiter(), min_chars=50, max_tokens=100)
    result = run_chain(chain, "prompt")

    assert result.value == long_text
    assert result.strategy == "third"
    assert result.failures == 2


def test_provider_with_spent_budget_is_not_called() -> None:
    limiter = RateLimiter()
    limiter.acquire("busy", 1)
    busy = StubProvider("busy", replies=["x" * 80], requests_per_minute=1)

    result = run_chain(provider_strategies([busy], limiter, min_chars=1, max_tokens=10), "prompt")

    assert not result.ok
    assert busy.prompts == []
