from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .clock import seconds_from, utcnow


def compute_backoff(attempt: int, base: float) -> float:
    """Compute linear backoff: attempt ``k`` waits ``k * base`` seconds."""
    return max(attempt, 0) * base


class RetryPolicy(BaseModel):
    """Decides what happens to a workflow after a failed attempt."""

    max_attempts: int = 3
    backoff_base_seconds: float = 5.0

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts

    def next_run_at(self, attempts: int, now: Optional[datetime] = None) -> datetime:
        delay = compute_backoff(attempts, self.backoff_base_seconds)
        return seconds_from(now or utcnow(), delay)
