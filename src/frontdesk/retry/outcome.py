"""
Outcome model for a single external-effect attempt.

Handlers either return one of the four outcome variants or raise. Raised
exceptions are mapped onto an outcome by `classify_exception` before anything
touches the operation store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

import httpx


class FailureClass(str, Enum):
    """How a failed attempt should be treated by the backoff policy."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    POLICY_BLOCKED = "policy_blocked"


@dataclass(frozen=True)
class Success:
    """The effect happened."""

    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransientFailure:
    """Retry later: network error, timeout, 5xx, rate limit."""

    reason: str

    failure_class = FailureClass.TRANSIENT


@dataclass(frozen=True)
class PermanentFailure:
    """Never retry: malformed payload, rejected input, unknown recipient."""

    reason: str

    failure_class = FailureClass.PERMANENT


@dataclass(frozen=True)
class PolicyBlocked:
    """Not allowed to run at all: opt-out, do-not-call, disabled by owner."""

    reason: str

    failure_class = FailureClass.POLICY_BLOCKED


Failure = Union[TransientFailure, PermanentFailure, PolicyBlocked]
Outcome = Union[Success, TransientFailure, PermanentFailure, PolicyBlocked]


class EffectError(Exception):
    """Base class for errors a handler raises to classify its own failure."""

    failure_class: FailureClass = FailureClass.TRANSIENT

    def to_outcome(self) -> Failure:
        reason = str(self) or type(self).__name__
        if self.failure_class is FailureClass.PERMANENT:
            return PermanentFailure(reason)
        if self.failure_class is FailureClass.POLICY_BLOCKED:
            return PolicyBlocked(reason)
        return TransientFailure(reason)


class TransientEffectError(EffectError):
    failure_class = FailureClass.TRANSIENT


class PermanentEffectError(EffectError):
    failure_class = FailureClass.PERMANENT


class PolicyBlockedError(EffectError):
    failure_class = FailureClass.POLICY_BLOCKED


# 4xx codes that still deserve a retry.
RETRYABLE_CLIENT_STATUSES = frozenset({408, 409, 423, 425, 429})


def classify_http_status(status_code: int) -> FailureClass:
    """Map an HTTP status code of a failed call onto a failure class."""
    if status_code in RETRYABLE_CLIENT_STATUSES or status_code >= 500:
        return FailureClass.TRANSIENT
    if 400 <= status_code < 500:
        return FailureClass.PERMANENT
    return FailureClass.TRANSIENT


def classify_exception(exc: BaseException) -> Failure:
    """Map any handler exception onto a failure outcome.

    Unknown exceptions are transient: retrying is preferred over losing work.
    """
    if isinstance(exc, EffectError):
        return exc.to_outcome()

    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        reason = f"HTTP {status_code} from {exc.request.url.host}"
        if classify_http_status(status_code) is FailureClass.PERMANENT:
            return PermanentFailure(reason)
        return TransientFailure(reason)

    if isinstance(exc, httpx.TimeoutException):
        return TransientFailure(f"timeout: {type(exc).__name__}")

    if isinstance(exc, httpx.TransportError):
        return TransientFailure(f"transport error: {type(exc).__name__}: {exc}")

    if isinstance(exc, TimeoutError):
        return TransientFailure("effect timed out")

    return TransientFailure(f"{type(exc).__name__}: {exc}")


def is_success(outcome: Outcome) -> bool:
    return isinstance(outcome, Success)


def describe(outcome: Outcome) -> str:
    """Short human-readable label used in logs and alerts."""
    if isinstance(outcome, Success):
        return "success"
    return f"{outcome.failure_class.value}: {outcome.reason}"
