"""Failure classification and the retry-versus-give-up decision.

Classification is kept apart from display: the lifecycle controller asks
``EscalationController.decide`` what to do with the current retry count
and publishes the outcome as a ``ViewStatus`` the surface can draw.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum

from glass_bowl.exceptions import GuardViolation, StoreError
from glass_bowl.retry import RetryPolicy


class ErrorKind(StrEnum):
    """How a failure is handled."""

    TRANSIENT = "transient"
    EXHAUSTED = "exhausted"
    RESOURCE = "resource"
    GUARD = "guard"


def classify(exc: BaseException) -> ErrorKind:
    """Map an exception raised during initialize or render to its kind.

    Store and query failures are resource errors, use-after-teardown is a
    guard violation, everything else (network, unexpected payloads) is
    transient until the retry budget says otherwise.
    """
    if isinstance(exc, GuardViolation):
        return ErrorKind.GUARD
    if isinstance(exc, StoreError):
        return ErrorKind.RESOURCE
    return ErrorKind.TRANSIENT


@dataclass(frozen=True)
class EscalationDecision:
    """What to do after the ``retry_count``-th consecutive failure."""

    kind: ErrorKind
    retry_count: int
    delay_index: int | None = None
    delay_seconds: float = 0.0

    @property
    def should_retry(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    @property
    def countdown_seconds(self) -> int:
        """Whole seconds shown on the countdown, at least one."""
        if not self.should_retry:
            return 0
        return max(1, math.ceil(self.delay_seconds))


class EscalationController:
    """Decides between a scheduled retry and permanent failure."""

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self.policy = policy or RetryPolicy()

    def decide(self, retry_count: int) -> EscalationDecision:
        """Decide the next step for the given consecutive failure count.

        Args:
            retry_count: Failures so far, already incremented for the
                failure being handled.

        Returns:
            A transient decision with the delay for the next attempt while
            ``retry_count <= max_retries``, otherwise an exhausted one.
        """
        if retry_count <= self.policy.max_retries:
            delay_index = min(retry_count - 1, len(self.policy.delays_ms) - 1)
            return EscalationDecision(
                kind=ErrorKind.TRANSIENT,
                retry_count=retry_count,
                delay_index=delay_index,
                delay_seconds=self.policy.delay_for(delay_index),
            )
        return EscalationDecision(kind=ErrorKind.EXHAUSTED, retry_count=retry_count)
