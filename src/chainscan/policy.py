"""
Retry policies for skipped block heights.

A policy is any object with decide(entry) -> RetryDecision. The scheduler
calls it after every unsuccessful re-verification of an entry.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol


class RetryAction(Enum):
    RETRY_NOW = "retry_now"
    RETRY_AFTER = "retry_after"
    GIVE_UP = "give_up"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    delay: float = 0.0  # Seconds, only meaningful for RETRY_AFTER

    @classmethod
    def retry_now(cls) -> "RetryDecision":
        return cls(RetryAction.RETRY_NOW)

    @classmethod
    def retry_after(cls, seconds: float) -> "RetryDecision":
        return cls(RetryAction.RETRY_AFTER, max(0.0, float(seconds)))

    @classmethod
    def give_up(cls) -> "RetryDecision":
        return cls(RetryAction.GIVE_UP)


@dataclass
class RetryEntry:
    """A skipped height waiting for re-verification."""
    height: int
    attempts: int = 0
    created_at: float = field(default_factory=time.monotonic)
    due_at: float = field(default_factory=time.monotonic)
    last_error: Optional[str] = None


class RetryPolicy(Protocol):
    def decide(self, entry: RetryEntry) -> RetryDecision:
        ...


class FixedIntervalRetryPolicy:
    """Retry every `interval` seconds, up to `max_attempts` verifications."""

    def __init__(self, interval: float = 5.0, max_attempts: int = 3):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval = float(interval)
        self.max_attempts = max_attempts

    def decide(self, entry: RetryEntry) -> RetryDecision:
        if entry.attempts >= self.max_attempts:
            return RetryDecision.give_up()
        if self.interval <= 0:
            return RetryDecision.retry_now()
        return RetryDecision.retry_after(self.interval)

    def __repr__(self) -> str:
        return f"FixedIntervalRetryPolicy(interval={self.interval}, max_attempts={self.max_attempts})"


class ExponentialBackoffRetryPolicy:
    """
    Wait base_delay * 2**(attempts - 1) seconds between verifications,
    capped at max_delay.
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0, max_attempts: int = 5):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.base_delay = float(base_delay)
        self.max_delay = float(max_delay)
        self.max_attempts = max_attempts

    def decide(self, entry: RetryEntry) -> RetryDecision:
        if entry.attempts >= self.max_attempts:
            return RetryDecision.give_up()
        delay = self.base_delay * (2 ** max(0, entry.attempts - 1))
        return RetryDecision.retry_after(min(delay, self.max_delay))

    def __repr__(self) -> str:
        return (
            f"ExponentialBackoffRetryPolicy(base_delay={self.base_delay}, "
            f"max_delay={self.max_delay}, max_attempts={self.max_attempts})"
        )
