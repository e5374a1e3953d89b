from __future__ import annotations

from medai_news.strategies import Strategy, run_chain


def test_first_successful_strategy_wins() -> None:
    calls = []

    def failing(x):
        calls.append("a")
        return None, False

    def working(x):
        calls.append("b")
        return x * 2, True

    result = run_chain([Strategy("a", failing), Strategy("b", working), Strategy("c", working)], 21)

    assert (result.value, result.ok, result.strategy, result.failures) == (42, True, "b", 1)
    assert calls == ["a", "b"]


def test_unavailable_strategies_are_skipped_without_counting() -> None:
    result = run_chain([
        Strategy("off", lambda: ("never", True), available=lambda: False),
        Strategy("on", lambda: ("yes", True)),
    ])

    assert result.strategy == "on"
    assert result.failures == 0


def test_raising_strategy_counts_as_failure() -> None:
    def boom():
        raise RuntimeError("provider exploded")

    result = run_chain([Strategy("boom", boom), Strategy("floor", lambda: ("ok", True))])

    assert result.value == "ok"
    assert result.failures == 1


def test_exhausted_chain_reports_not_ok() -> None:
    result = run_chain([Strategy("a", lambda: (None, False))])

    assert not result.ok
    assert result.value is None
    assert result.strategy is None
