"""
Typed results returned by every pipeline component.

    Success(value)           the reasoning model produced valid output
    Fallback(value, reason)  a deterministic default was used instead
    Suppressed(reason)       nothing was produced on purpose (no guessing)
    Skipped(reason)          a precondition was not met; nothing was attempted
"""

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Success:
    value: Any


@dataclass(frozen=True)
class Fallback:
    value: Any
    reason: str


@dataclass(frozen=True)
class Suppressed:
    reason: str


@dataclass(frozen=True)
class Skipped:
    reason: str


Outcome = Union[Success, Fallback, Suppressed, Skipped]


def produced(outcome: Outcome) -> bool:
    """True when the outcome carries a persisted value."""
    return isinstance(outcome, (Success, Fallback))
