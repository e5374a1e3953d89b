from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Uniform strategy outcome: (value, ok). `value` is meaningful only when ok.
Outcome = Tuple[Optional[T], bool]


@dataclass
class Strategy(Generic[T]):
    """One step of a fallback chain.

    `available` is the capability check (credentials present, budget left...).
    `attempt` must not raise for expected failures; anything it does raise is
    logged and treated as `(None, False)`.
    """
    name: str
    attempt: Callable[..., Outcome]
    available: Callable[[], bool] = lambda: True


@dataclass(frozen=True)
class ChainResult(Generic[T]):
    value: Optional[T]
    ok: bool
    strategy: Optional[str] = None
    failures: int = 0


def run_chain(strategies: Sequence[Strategy], *args: Any, **kwargs: Any) -> ChainResult:
    """Try strategies in order until one reports ok."""
    failures = 0
    for st in strategies:
        if not st.available():
            logger.debug("Strategy %s unavailable, skipping", st.name)
            continue
        try:
            value, ok = st.attempt(*args, **kwargs)
        except Exception as e:  # noqa: BLE001 - a strategy failure must not sink the chain
            logger.warning("Strategy %s raised: %s", st.name, e)
            value, ok = None, False
        if ok:
            return ChainResult(value=value, ok=True, strategy=st.name, failures=failures)
        failures += 1
        logger.debug("Strategy %s gave no result", st.name)
    return ChainResult(value=None, ok=False, strategy=None, failures=failures)
