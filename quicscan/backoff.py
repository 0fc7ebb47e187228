from __future__ import annotations

import random
from typing import Optional

from .config import DEFAULT_BACKOFF_BASE_SECONDS, DEFAULT_BACKOFF_MAX_SECONDS


class BackoffStrategy:
    """Exponential backoff with jitter between navigation attempts.

    Sleep duration is base * 2^(attempt-1) plus up to jitter_ratio of random
    jitter, capped at a configurable maximum before jitter is added."""

    def __init__(
        self,
        base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
        max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS,
        jitter_ratio: float = 0.1,
    ) -> None:
        self._base = base_seconds
        self._max = max_seconds
        self._jitter_ratio = max(0.0, jitter_ratio)

    def get_sleep(self, attempt: int, error_type: Optional[str] = None) -> float:
        """Calculate the backoff sleep in seconds before retrying after `attempt` failed."""
        exp = min(self._max, self._base * (2 ** max(attempt - 1, 0)))
        jitter = random.uniform(0, exp * self._jitter_ratio) if self._jitter_ratio else 0.0
        return exp + jitter
