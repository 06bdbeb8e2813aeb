"""Retry and backoff policy for calls to external services."""
import random
import time
from dataclasses import dataclass, field

from flask import current_app

DEFAULT_RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
DEFAULT_RETRYABLE_MESSAGES = ('overloaded', 'rate limit', 'temporarily unavailable')


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with bounded jitter."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    multiplier: float = 2.0
    jitter_ratio: float = 0.3
    retryable_statuses: frozenset = field(default=DEFAULT_RETRYABLE_STATUSES)
    retryable_messages: tuple = field(default=DEFAULT_RETRYABLE_MESSAGES)

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0.")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be >= 0.")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1.")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError("jitter_ratio must be between 0 and 1.")

    @staticmethod
    def from_config(prefix='GEMINI'):
        """Build a policy from <prefix>_* application settings."""
        config = current_app.config
        return RetryPolicy(
            max_retries=int(config.get(f'{prefix}_MAX_RETRIES', 3)),
            base_delay_ms=int(config.get(f'{prefix}_BASE_DELAY_MS', 1000)),
            max_delay_ms=int(config.get(f'{prefix}_MAX_DELAY_MS', 10000)),
            multiplier=float(config.get(f'{prefix}_BACKOFF_MULTIPLIER', 2)),
            jitter_ratio=float(config.get(f'{prefix}_JITTER_RATIO', 0.3)),
        )

    @property
    def max_attempts(self):
        return self.max_retries + 1

    def compute_delay(self, attempt, rng=random.random):
        """
        Delay before the next attempt

        Args:
            attempt: zero-based index of the attempt that just failed
            rng: callable returning a float in [0, 1)

        Returns:
            Delay in milliseconds, never above max_delay_ms
        """
        exponential = self.base_delay_ms * (self.multiplier ** attempt)
        jitter = rng() * self.jitter_ratio * exponential
        return min(exponential + jitter, self.max_delay_ms)

    def is_retryable(self, status=None, message=None):
        """Return whether a failure with this status code or message should be retried."""
        if status is not None and (status in self.retryable_statuses or 500 <= status < 600):
            return True
        if message:
            lowered = message.lower()
            return any(marker in lowered for marker in self.retryable_messages)
        return False

    def should_retry(self, attempt):
        """Return whether another attempt is permitted after attempt (zero-based) failed."""
        return attempt < self.max_retries

    def sleep(self, attempt, sleep=time.sleep, rng=random.random):
        """Block for the computed delay and return it in milliseconds."""
        delay_ms = self.compute_delay(attempt, rng)
        sleep(delay_ms / 1000.0)
        return delay_ms
