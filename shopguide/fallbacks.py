"""Ordered fallback strategies.

A strategy either produces an acceptable value or fails (raises, or returns a value
its ``accept`` predicate rejects). ``try_in_order`` walks the list and returns the
first success as a Result, so the fallback order is plain data that tests can inspect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger("shopguide.fallbacks")

T = TypeVar("T")


@dataclass(frozen=True)
class Strategy(Generic[T]):
    """One named way of producing a value."""
    name: str
    run: Callable[[], T]
    accept: Optional[Callable[[T], bool]] = None


@dataclass
class Result(Generic[T]):
    """Outcome of try_in_order: the winning value or every failure on the way."""
    value: Optional[T] = None
    strategy: Optional[str] = None
    errors: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.strategy is not None

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default  # type: ignore[return-value]


def try_in_order(strategies: Sequence[Strategy[T]], label: str = "") -> Result[T]:
    """Purpose: Evaluate strategies in order and keep the first acceptable value.
    Inputs/Outputs: Input is an ordered list of Strategy; output is a Result carrying
        the value, the winning strategy name, and (name, error) pairs for the losers.
    Side Effects / State: Logs each failed strategy at warning level.
    Dependencies: None.
    Failure Modes: Never raises for strategy errors; an empty list yields a failed Result.
    If Removed: Callers fall back to nested try/except chains.
    Testing Notes: Feed a raising strategy, a rejected value, and a good value.
    """
    # Each strategy gets one shot; exceptions and rejections both move on.
    result: Result[T] = Result()
    for strategy in strategies:
        try:
            value = strategy.run()
        except Exception as exc:
            result.errors.append((strategy.name, f"{type(exc).__name__}: {exc}"))
            logger.warning("fallback=%s strategy=%s error=%s", label, strategy.name, exc)
            continue
        if strategy.accept is not None and not strategy.accept(value):
            result.errors.append((strategy.name, "rejected"))
            logger.info("fallback=%s strategy=%s rejected", label, strategy.name)
            continue
        result.value = value
        result.strategy = strategy.name
        return result
    return result
