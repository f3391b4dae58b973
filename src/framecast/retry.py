"""Retry policy shared by the Asset Loader and Encode Sink boundaries.

One object describes how many attempts a boundary call gets and how
long to wait between them. The backoff schedule is explicit: attempt N
(1-based) that fails waits ``backoff[N - 1]`` seconds, and the last
entry repeats if the schedule is shorter than ``max_attempts - 1``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: tuple[float, ...] = (0.25, 0.5, 1.0)
    retry_on: tuple[type[BaseException], ...] = (OSError,)
    # Checked before retry_on: these fail immediately even if they
    # subclass something in retry_on.
    give_up_on: tuple[type[BaseException], ...] = (
        FileNotFoundError, IsADirectoryError, PermissionError,
    )

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if any(b < 0 for b in self.backoff):
            raise ValueError(f"backoff delays must be >= 0, got {self.backoff!r}")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        if not self.backoff:
            return 0.0
        return self.backoff[min(attempt, len(self.backoff)) - 1]

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        if isinstance(exc, self.give_up_on):
            return False
        return isinstance(exc, self.retry_on)

    def call(self, fn, *args, **kwargs):
        """Call fn, retrying per this policy. Re-raises the last error."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    getattr(fn, "__name__", fn), attempt, self.max_attempts, exc, delay,
                )
                time.sleep(delay)

    async def acall(self, fn, *args, **kwargs):
        """Await fn(*args, **kwargs), retrying per this policy."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    getattr(fn, "__name__", fn), attempt, self.max_attempts, exc, delay,
                )
                await asyncio.sleep(delay)


NO_RETRY = RetryPolicy(max_attempts=1, backoff=())
