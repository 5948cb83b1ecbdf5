"""Bounded snapshot download with a fixed exponential backoff table.

The viewer's only network operation is one GET of the run database
snapshot. ``resilient_fetch`` retries it up to ``max_retries`` more times
after the first failure, sleeping for the next entry of the delay table
between attempts (1 s, 2 s, 4 s by default). The schedule is fixed: no
jitter and no adaptation to error rates.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from glass_bowl.exceptions import FetchError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS_MS: tuple[int, ...] = (1000, 2000, 4000)


def check_delay_table(max_retries: int, delays_ms: Sequence[int]) -> None:
    """Validate a retry delay table against an attempt budget.

    Args:
        max_retries: Additional attempts allowed after the first failure.
        delays_ms: Delay for each retry tier, in milliseconds.

    Raises:
        ValueError: If the table is too short or holds a non-positive delay.
    """
    if len(delays_ms) < max_retries - 1:
        msg = (
            f"delays_ms has {len(delays_ms)} entries but max_retries={max_retries} "
            f"needs at least {max_retries - 1}"
        )
        raise ValueError(msg)
    if max_retries > 0 and not delays_ms:
        msg = "delays_ms must not be empty when retries are enabled"
        raise ValueError(msg)
    if any(delay <= 0 for delay in delays_ms):
        msg = "delays_ms entries must be positive"
        raise ValueError(msg)


class RetryPolicy(BaseModel):
    """Immutable retry budget and delay schedule.

    Attributes:
        max_retries: Attempts allowed after the first failure.
        delays_ms: Ordered delay per retry tier in milliseconds. An index
            past the end of the table reuses the last delay.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=MAX_RETRIES, ge=0)
    delays_ms: tuple[int, ...] = DEFAULT_RETRY_DELAYS_MS

    @model_validator(mode="after")
    def _validate_table(self) -> RetryPolicy:
        check_delay_table(self.max_retries, self.delays_ms)
        return self

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, index: int) -> float:
        """Return the delay in seconds for retry tier ``index`` (0-based)."""
        if not self.delays_ms:
            return 0.0
        clamped = min(max(index, 0), len(self.delays_ms) - 1)
        return self.delays_ms[clamped] / 1000


_SINGLE_ATTEMPT = RetryPolicy(max_retries=0, delays_ms=())


class wait_delay_table(wait_base):  # noqa: N801 - tenacity naming convention
    """Tenacity wait strategy that reads the delay from a RetryPolicy."""

    def __init__(self, policy: RetryPolicy) -> None:
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        # attempt_number is 1-based; the wait after attempt 1 is tier 0
        return self.policy.delay_for(retry_state.attempt_number - 1)


def _log_attempt_failure(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "fetch_attempt_failed",
        attempt=retry_state.attempt_number,
        next_delay_seconds=delay,
        error=str(exc),
    )


async def resilient_fetch(
    client: httpx.AsyncClient,
    url: str,
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bytes:
    """Download ``url`` with bounded retries and table-driven backoff.

    Args:
        client: The HTTP client to issue the GET with.
        url: Absolute URL of the resource.
        policy: Retry budget and delay table (defaults to 3 retries at
            1 s, 2 s, 4 s).
        sleep: Coroutine used to wait between attempts.

    Returns:
        The response body.

    Raises:
        FetchError: If every attempt failed. Chained to the last
            ``httpx.HTTPError``.
    """
    policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.total_attempts),
        wait=wait_delay_table(policy),
        retry=retry_if_exception_type(httpx.HTTPError),
        before_sleep=_log_attempt_failure,
        sleep=sleep,
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                response = await client.get(url)
                response.raise_for_status()
                logger.debug(
                    "fetch_succeeded",
                    url=url,
                    attempt=attempt.retry_state.attempt_number,
                    size=len(response.content),
                )
                return response.content
    except httpx.HTTPError as exc:
        logger.error("fetch_exhausted", url=url, attempts=policy.total_attempts)
        raise FetchError(url, policy.total_attempts, str(exc)) from exc
    raise AssertionError("unreachable")  # pragma: no cover


class SnapshotFetcher:
    """Downloads the run database snapshot from a fixed URL.

    Attributes:
        url: Snapshot endpoint.
        policy: Retry policy for full fetches.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._sleep = sleep
        self.url = url
        self.policy = policy or RetryPolicy()

    async def fetch(self) -> bytes:
        """Download with the full retry policy."""
        return await resilient_fetch(self._client, self.url, self.policy, sleep=self._sleep)

    async def fetch_once(self) -> bytes:
        """Download with a single attempt, used by periodic refresh."""
        return await resilient_fetch(
            self._client, self.url, _SINGLE_ATTEMPT, sleep=self._sleep
        )

