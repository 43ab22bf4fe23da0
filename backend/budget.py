"""Content Risk Analyzer - Token/Rate Budget Tracker
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

One process-wide gate every model call passes through:
  - sliding window of request timestamps (max N requests per window)
  - running token counter that resets when the window rolls over
  - semaphore bounding in-flight provider calls, with a fixed delay
    before the slot is handed to the next caller

admit() never raises for budget reasons. It sleeps until the window rolls and
then admits, so a caller waits at most one window per admission attempt.
"""

import time
import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

from config import AnalysisConfig

logger = logging.getLogger(__name__)

# Rough chars-per-token ratio and the flat cost of a multimodal frame bundle
CHARS_PER_TOKEN = 4
MEDIA_TOKEN_COST = 5000
MIN_WAIT_SECONDS = 0.01


def estimate_tokens(text: str, with_media: bool = False) -> int:
    estimate = len(text or "") // CHARS_PER_TOKEN
    if with_media:
        estimate += MEDIA_TOKEN_COST
    return max(estimate, 1)


class TokenBudgetTracker:
    """
    Shared budget state guarded by an asyncio.Lock.

    `clock` and `sleep` are injectable so tests can drive the window
    deterministically.
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or AnalysisConfig()
        self._clock = clock
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_requests))

        self._requests: deque[float] = deque(maxlen=max(1, self.config.max_requests_per_window))
        self._window_start = clock()
        self._tokens_used = 0

        self._in_flight = 0
        self._queued = 0
        self.total_admitted = 0
        self.total_waits = 0

    @property
    def token_ceiling(self) -> float:
        return self.config.tokens_per_minute * self.config.token_warning_threshold

    def _roll_window(self, now: float) -> None:
        window = self.config.rate_window_seconds
        if now - self._window_start >= window:
            if self._tokens_used:
                logger.debug(f"Token window rolled over ({self._tokens_used} tokens used)")
            self._tokens_used = 0
            self._window_start = now
        while self._requests and now - self._requests[0] >= window:
            self._requests.popleft()

    async def admit(self, estimated_tokens: int) -> None:
        """Reserve `estimated_tokens` in the current window, waiting if needed"""
        estimated = max(0, int(estimated_tokens))
        window = self.config.rate_window_seconds

        while True:
            async with self._lock:
                now = self._clock()
                self._roll_window(now)

                # A single call bigger than the ceiling is still admitted into
                # an empty window, otherwise it could never run.
                if self._tokens_used > 0 and self._tokens_used + estimated > self.token_ceiling:
                    wait = self._window_start + window - now
                    reason = (
                        f"Token limit approaching ({self._tokens_used}/"
                        f"{self.config.tokens_per_minute})"
                    )
                elif len(self._requests) >= self.config.max_requests_per_window:
                    wait = self._requests[0] + window - now
                    reason = f"Rate limit reached ({len(self._requests)} requests in window)"
                else:
                    self._tokens_used += estimated
                    self._requests.append(now)
                    self.total_admitted += 1
                    return

            self.total_waits += 1
            wait = max(wait, MIN_WAIT_SECONDS)
            logger.warning(f"{reason}, waiting {wait:.2f}s")
            await self._sleep(wait)

    @asynccontextmanager
    async def slot(self, estimated_tokens: int):
        """Concurrency-limited, budget-admitted section around one provider call"""
        self._queued += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._queued -= 1

        try:
            await self.admit(estimated_tokens)
            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1
            if self.config.inter_call_delay > 0:
                await self._sleep(self.config.inter_call_delay)
        finally:
            self._semaphore.release()

    def usage(self) -> dict:
        now = self._clock()
        window = self.config.rate_window_seconds
        expired = now - self._window_start >= window
        used = 0 if expired else self._tokens_used
        limit = self.config.tokens_per_minute
        return {
            "used": used,
            "limit": limit,
            "remaining": max(0, limit - used),
            "requests_in_window": sum(1 for t in self._requests if now - t < window),
            "max_requests_per_window": self.config.max_requests_per_window,
            "in_flight": self._in_flight,
            "queued": self._queued,
            "window_resets_in": 0.0 if expired else round(self._window_start + window - now, 2),
        }


# Process-wide instance shared by every request
_budget_tracker: Optional[TokenBudgetTracker] = None


def get_budget_tracker(config: Optional[AnalysisConfig] = None) -> TokenBudgetTracker:
    global _budget_tracker
    if _budget_tracker is None:
        _budget_tracker = TokenBudgetTracker(config)
    return _budget_tracker
