"""
Retry policy and failure classification.

A dispatch ends in one of three outcomes: success, a transient failure
(timeout, 5xx, 408/429, dropped connection) or a permanent failure (other
4xx, unsupported kind, unrecoverable auth). The policy turns
(attempts, outcome) into the item's next status. It is pure: no I/O, no clock.

Anything the classifier does not recognise counts as transient. Retrying an
unknown error costs one more attempt; treating it as permanent would drop
the record silently.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

import httpx

from crmsync.models.sync import SyncStatus
from crmsync.providers.errors import PermanentError, TransientError


class Outcome(str, Enum):
    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class RetryDecision:
    status: SyncStatus
    eligible_again: bool


@dataclass(frozen=True)
class RetryPolicy:
    """
    Args:
        max_attempts: Dispatches allowed before a transient failure turns terminal.
        min_delay: Minimum gap between attempts; zero means "next tick".
        backoff_factor: Multiplier applied to min_delay per extra attempt.
    """

    max_attempts: int = 3
    min_delay: timedelta = timedelta(0)
    backoff_factor: float = 1.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_factor < 1.0:
            raise ValueError(f"backoff_factor must be >= 1.0, got {self.backoff_factor}")

    def decide(self, attempts: int, outcome: Outcome) -> RetryDecision:
        if outcome == Outcome.SUCCESS:
            return RetryDecision(SyncStatus.COMPLETED, eligible_again=False)
        if outcome == Outcome.PERMANENT:
            return RetryDecision(SyncStatus.FAILED_TERMINAL, eligible_again=False)
        if attempts < self.max_attempts:
            return RetryDecision(SyncStatus.FAILED_RETRYABLE, eligible_again=True)
        return RetryDecision(SyncStatus.FAILED_TERMINAL, eligible_again=False)

    def delay_after(self, attempts: int) -> timedelta:
        """Delay before the next attempt, given attempts made so far."""
        if not self.min_delay:
            return timedelta(0)
        return self.min_delay * (self.backoff_factor ** max(0, attempts - 1))

    def next_eligible_at(self, last_attempt_at: datetime, attempts: int) -> Optional[datetime]:
        delay = self.delay_after(attempts)
        if not delay:
            return None
        return last_attempt_at + delay


@dataclass
class RetryPolicies:
    """Default policy plus per-provider overrides."""

    default: RetryPolicy = field(default_factory=RetryPolicy)
    overrides: Dict[str, RetryPolicy] = field(default_factory=dict)

    def for_provider(self, provider: str) -> RetryPolicy:
        return self.overrides.get(provider, self.default)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicies":
        default = RetryPolicy(
            max_attempts=settings.max_attempts,
            min_delay=timedelta(seconds=settings.retry_min_delay_seconds),
            backoff_factor=settings.retry_backoff_factor,
        )
        overrides = {
            provider: RetryPolicy(
                max_attempts=attempts,
                min_delay=default.min_delay,
                backoff_factor=default.backoff_factor,
            )
            for provider, attempts in settings.provider_max_attempts.items()
        }
        return cls(default=default, overrides=overrides)


# ─── Classification ──────────────────────────────────────────────────────────

def classify_status_code(status_code: int) -> Outcome:
    """Map an HTTP status code to an outcome."""
    if status_code < 400:
        return Outcome.SUCCESS
    if status_code in (408, 429) or status_code >= 500:
        return Outcome.TRANSIENT
    return Outcome.PERMANENT


def classify_exception(exc: BaseException) -> Outcome:
    """Map a dispatch exception to an outcome; unknown errors are transient."""
    if isinstance(exc, PermanentError):
        return Outcome.PERMANENT
    if isinstance(exc, TransientError):
        return Outcome.TRANSIENT
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return Outcome.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status_code(exc.response.status_code)
    return Outcome.TRANSIENT
