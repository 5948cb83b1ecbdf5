"""Unit tests for glass_bowl.escalation - classification and retry decisions."""

from __future__ import annotations

import httpx
import pytest

from glass_bowl.escalation import (
    ErrorKind,
    EscalationController,
    EscalationDecision,
    classify,
)
from glass_bowl.exceptions import (
    FetchError,
    GuardViolation,
    QueryError,
    StoreClosedError,
    StoreError,
)
from glass_bowl.retry import RetryPolicy


class TestClassify:
    """classify maps exceptions onto error kinds."""

    @pytest.mark.parametrize(
        ("exc", "kind"),
        [
            (FetchError("http://x", 4), ErrorKind.TRANSIENT),
            (httpx.ConnectError("down"), ErrorKind.TRANSIENT),
            (ValueError("bad payload"), ErrorKind.TRANSIENT),
            (StoreError("bad header"), ErrorKind.RESOURCE),
            (QueryError("no such table"), ErrorKind.RESOURCE),
            (StoreClosedError("closed"), ErrorKind.RESOURCE),
            (GuardViolation("gone"), ErrorKind.GUARD),
        ],
    )
    def test_kinds(self, exc: BaseException, kind: ErrorKind) -> None:
        assert classify(exc) is kind


class TestEscalationController:
    """decide walks the delay table and then gives up."""

    def test_retries_use_successive_tiers(self) -> None:
        controller = EscalationController()
        decisions = [controller.decide(n) for n in (1, 2, 3)]
        assert [d.kind for d in decisions] == [ErrorKind.TRANSIENT] * 3
        assert [d.delay_index for d in decisions] == [0, 1, 2]
        assert [d.delay_seconds for d in decisions] == [1.0, 2.0, 4.0]
        assert [d.countdown_seconds for d in decisions] == [1, 2, 4]

    def test_fourth_failure_is_exhausted(self) -> None:
        decision = EscalationController().decide(4)
        assert decision.kind is ErrorKind.EXHAUSTED
        assert not decision.should_retry
        assert decision.delay_index is None
        assert decision.countdown_seconds == 0

    def test_index_clamped_to_table(self) -> None:
        policy = RetryPolicy(max_retries=4, delays_ms=(1000, 2000, 3000))
        controller = EscalationController(policy)
        decisions = [controller.decide(n) for n in range(1, 5)]
        assert [d.delay_index for d in decisions] == [0, 1, 2, 2]
        assert [d.delay_seconds for d in decisions] == [1.0, 2.0, 3.0, 3.0]
        assert controller.decide(5).kind is ErrorKind.EXHAUSTED

    def test_zero_budget_gives_up_immediately(self) -> None:
        policy = RetryPolicy(max_retries=0, delays_ms=())
        assert EscalationController(policy).decide(1).kind is ErrorKind.EXHAUSTED

    def test_sub_second_delay_shows_one_second(self) -> None:
        decision = EscalationDecision(
            kind=ErrorKind.TRANSIENT, retry_count=1, delay_index=0, delay_seconds=0.25
        )
        assert decision.countdown_seconds == 1
