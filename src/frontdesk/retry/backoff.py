"""
Backoff policies.

A policy is a pure function of (attempt, failure class): no randomness, no
clock, no I/O. `attempt` is the attempt count *after* the failure being
scheduled has been counted, so the first transient failure asks for attempt 1.
Every policy gives up once `attempt` exceeds its `max_attempts`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Protocol, Sequence, Union

from frontdesk.retry.outcome import FailureClass


@dataclass(frozen=True)
class Terminal:
    """No further attempt will be scheduled."""

    reason: str


Delay = Union[timedelta, Terminal]


class BackoffPolicy(Protocol):
    """Computes the wait before the next attempt, or gives up."""

    max_attempts: int

    def next_delay(self, attempt: int, failure_class: FailureClass) -> Delay:
        ...


def _terminal_for_class(failure_class: FailureClass) -> Terminal | None:
    if failure_class is FailureClass.PERMANENT:
        return Terminal("permanent failure")
    if failure_class is FailureClass.POLICY_BLOCKED:
        return Terminal("blocked by policy")
    return None


@dataclass(frozen=True)
class ExponentialBackoff:
    """delay = base * 2**attempt, terminal once attempt exceeds max_attempts.

    With base=5 minutes and max_attempts=3 the first three transient failures
    wait 10, 20 and 40 minutes and the fourth is terminal.
    """

    base: timedelta = timedelta(minutes=5)
    max_attempts: int = 3
    max_delay: timedelta | None = None

    def __post_init__(self) -> None:
        if self.base <= timedelta(0):
            raise ValueError("base must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.max_delay is not None and self.max_delay < self.base:
            raise ValueError("max_delay must be >= base")

    def next_delay(self, attempt: int, failure_class: FailureClass) -> Delay:
        terminal = _terminal_for_class(failure_class)
        if terminal is not None:
            return terminal
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        if attempt > self.max_attempts:
            return Terminal(f"gave up after {self.max_attempts} retries")
        delay = self.base * (2**attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


@dataclass(frozen=True)
class StepBackoff:
    """Delay looked up in a fixed, non-decreasing table.

    steps[0] is the initial wait used when work is first recorded; failure n
    waits steps[n]. Attempts past the end of the table reuse the last step
    until max_attempts is exceeded.
    """

    steps: tuple[timedelta, ...]
    max_attempts: int

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("steps must not be empty")
        if any(later < earlier for earlier, later in zip(self.steps, self.steps[1:])):
            raise ValueError("steps must be non-decreasing")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_seconds(cls, seconds: Sequence[int], max_attempts: int) -> StepBackoff:
        return cls(tuple(timedelta(seconds=s) for s in seconds), max_attempts)

    def first_delay(self) -> timedelta:
        return self.steps[0]

    def next_delay(self, attempt: int, failure_class: FailureClass) -> Delay:
        terminal = _terminal_for_class(failure_class)
        if terminal is not None:
            return terminal
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        if attempt > self.max_attempts:
            return Terminal(f"max retries ({self.max_attempts}) exceeded")
        return self.steps[min(attempt, len(self.steps) - 1)]


@dataclass(frozen=True)
class CappedBackoff:
    """Replaces the attempt cap of a policy with a per-operation one.

    The cap may be raised as well as lowered; delays still follow the wrapped
    policy's own formula, including its max_delay.
    """

    inner: BackoffPolicy
    max_attempts: int

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def next_delay(self, attempt: int, failure_class: FailureClass) -> Delay:
        policy = replace(self.inner, max_attempts=self.max_attempts)  # type: ignore[type-var]
        return policy.next_delay(attempt, failure_class)
