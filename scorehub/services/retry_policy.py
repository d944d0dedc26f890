"""
Retry policy for upstream calls.

Classification of one attempt is a pure function of its outcome and the attempt
number; the retry loop that acts on the decision lives in ResilientClient.

Outcomes:
- 2xx: succeed, key is healthy
- 429: key quota exhausted, retry after a linear backoff
- 401 / 403: key rejected, retry immediately with another key
- other status: terminal, not a key problem
- transport error: retry after a linear backoff, key health untouched
"""

from dataclasses import dataclass
from enum import Enum

import httpx

MAX_RETRIES = 3
RETRY_DELAY_MS = 1000

RATE_LIMIT_STATUS = 429
AUTH_FAILURE_STATUSES = frozenset({401, 403})


class RetryAction(str, Enum):
    """What the retry loop should do after an attempt."""

    SUCCEED = "SUCCEED"
    RETRY_WITH_DELAY = "RETRY_WITH_DELAY"
    RETRY_IMMEDIATELY = "RETRY_IMMEDIATELY"
    TERMINAL = "TERMINAL"


class KeyVerdict(str, Enum):
    """What to report to the key pool about the key used for an attempt."""

    WORKING = "WORKING"
    FAILED = "FAILED"
    UNCHANGED = "UNCHANGED"


@dataclass(frozen=True)
class RetryDecision:
    """Decision for a single attempt."""

    action: RetryAction
    verdict: KeyVerdict = KeyVerdict.UNCHANGED
    delay_ms: int = 0

    @property
    def should_retry(self) -> bool:
        return self.action in (
            RetryAction.RETRY_WITH_DELAY,
            RetryAction.RETRY_IMMEDIATELY,
        )


def backoff_delay_ms(attempt: int, base_delay_ms: int = RETRY_DELAY_MS) -> int:
    """Linear backoff: 1x, 2x, 3x the base delay."""
    return base_delay_ms * attempt


def is_transport_error(error: BaseException) -> bool:
    """Connection failures and timeouts, as opposed to HTTP status failures."""
    return isinstance(error, (httpx.TransportError, OSError))


def classify(
    outcome: int | BaseException,
    attempt: int,
    max_retries: int = MAX_RETRIES,
    base_delay_ms: int = RETRY_DELAY_MS,
) -> RetryDecision:
    """
    Classify one attempt.

    Args:
        outcome: HTTP status code, or the exception raised by the transport
        attempt: 1-based attempt number
        max_retries: Total attempts allowed per logical call
        base_delay_ms: Backoff unit for quota and transport failures

    Returns:
        RetryDecision telling the loop how to proceed and what to report
    """
    attempts_left = attempt < max_retries

    if isinstance(outcome, BaseException):
        if not is_transport_error(outcome) or not attempts_left:
            return RetryDecision(RetryAction.TERMINAL)
        return RetryDecision(
            RetryAction.RETRY_WITH_DELAY,
            delay_ms=backoff_delay_ms(attempt, base_delay_ms),
        )

    status = outcome

    if 200 <= status < 300:
        return RetryDecision(RetryAction.SUCCEED, verdict=KeyVerdict.WORKING)

    if status == RATE_LIMIT_STATUS:
        if not attempts_left:
            return RetryDecision(RetryAction.TERMINAL, verdict=KeyVerdict.FAILED)
        return RetryDecision(
            RetryAction.RETRY_WITH_DELAY,
            verdict=KeyVerdict.FAILED,
            delay_ms=backoff_delay_ms(attempt, base_delay_ms),
        )

    if status in AUTH_FAILURE_STATUSES:
        if not attempts_left:
            return RetryDecision(RetryAction.TERMINAL, verdict=KeyVerdict.FAILED)
        return RetryDecision(RetryAction.RETRY_IMMEDIATELY, verdict=KeyVerdict.FAILED)

    return RetryDecision(RetryAction.TERMINAL)
