"""
Rate limiting and 429 backoff handling for provider API calls.
"""

import asyncio
import math
import random
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from core.config.settings import RateLimitSettings
from core.logging import get_logger
from core.utils.exceptions import ProviderError, ProviderRateLimitedError, TradeRouterException
from .models import RateLimitDecision, RateLimitState
from .provider_errors import as_provider_error
from .stores import InMemoryRateLimitStore, RateLimitStore

T = TypeVar("T")


def parse_retry_after(header: Optional[str], now: float) -> Optional[float]:
    """Return the Retry-After delay in seconds, or None when absent/unparseable.

    The header is either delta-seconds or an HTTP date.
    """
    if header is None or str(header).strip() == "":
        return None
    value = str(header).strip()
    # Leading delta-seconds digits win, so "1.5" and "120s" read as 1 and 120
    seconds = re.match(r"\d+", value)
    if seconds:
        return float(seconds.group())
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, retry_at.timestamp() - now)


def _rate_limited_error(error: Exception) -> Optional[ProviderError]:
    """Return the normalized 429 behind ``error``, or None if it is not one."""
    # Already-classified failures (broken connection, exhausted retries) pass through
    if isinstance(error, TradeRouterException) and not isinstance(error, ProviderError):
        return None
    provider_error = as_provider_error(error)
    return provider_error if provider_error.is_rate_limited else None


class RateLimitManager:
    """Per-key fixed-window admission control with explicit retry-after tracking.

    Clock, sleep and random source are injectable so windows and backoff can
    be driven deterministically.
    """

    def __init__(
        self,
        settings: RateLimitSettings,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.store = store or InMemoryRateLimitStore()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._cleanup_task: Optional[asyncio.Task] = None
        self.logger = get_logger(__name__, component="rate_limiter")

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def should_limit(self, key: str) -> RateLimitDecision:
        """Check if a request for ``key`` must wait, counting it if admitted."""
        async with self._lock_for(key):
            now = self._clock()
            state = await self.store.get(key)

            if state is None:
                await self.store.set(key, RateLimitState(
                    last_request_at=now,
                    request_count=1,
                    window_start_at=now,
                ))
                return RateLimitDecision(limited=False)

            # An explicit deadline wins over window accounting
            if state.has_deadline(now):
                return RateLimitDecision(
                    limited=True,
                    retry_after=math.ceil(state.retry_after_at - now),
                )

            if now - state.window_start_at >= self.settings.window_seconds:
                state.window_start_at = now
                state.request_count = 1
                state.retry_after_at = 0.0
            else:
                state.request_count += 1

            if state.request_count > self.settings.max_requests:
                state.retry_after_at = state.window_start_at + self.settings.window_seconds
                await self.store.set(key, state)
                return RateLimitDecision(
                    limited=True,
                    retry_after=max(1, math.ceil(state.retry_after_at - now)),
                )

            state.last_request_at = now
            await self.store.set(key, state)
            return RateLimitDecision(limited=False)

    def compute_backoff(self, attempt: int) -> float:
        """Exponential backoff with additive jitter, in seconds."""
        # Past 2**64 every delay is already capped; large exponents would overflow
        exponential = self.settings.base_delay_seconds * (2.0 ** min(max(0, attempt), 64))
        jitter = self._rng.uniform(0, self.settings.jitter_max_seconds)
        return min(self.settings.max_delay_seconds, exponential) + jitter

    async def handle_429(self, key: str, retry_after_header: Optional[str] = None,
                         remaining_header: Optional[str] = None) -> int:
        """Record a provider 429 for ``key`` and return the wait in whole seconds."""
        async with self._lock_for(key):
            now = self._clock()
            state = await self.store.get(key)

            delay = parse_retry_after(retry_after_header, now)
            if delay is None:
                attempt = state.request_count if state and state.request_count else 1
                delay = self.compute_backoff(attempt)

            if state is None:
                state = RateLimitState(last_request_at=now, request_count=0, window_start_at=now)
            state.retry_after_at = now + delay
            state.last_request_at = now
            await self.store.set(key, state)

        retry_after_seconds = math.ceil(delay)
        self.logger.warning(
            "Provider rate limit hit",
            key=key,
            retry_after_seconds=retry_after_seconds,
            rate_limit_remaining=remaining_header or "unknown",
            retry_after_header=retry_after_header,
        )
        return retry_after_seconds

    async def clear_limit(self, key: str) -> None:
        await self.store.delete(key)

    async def get_state(self, key: str) -> Optional[RateLimitState]:
        return await self.store.get(key)

    async def cleanup(self) -> int:
        """Evict states idle for two windows whose retry deadline has passed."""
        now = self._clock()
        max_age = self.settings.window_seconds * 2
        evicted = 0
        for key in await self.store.keys():
            async with self._lock_for(key):
                state = await self.store.get(key)
                if state is None:
                    continue
                if now - state.last_request_at > max_age and now > state.retry_after_at:
                    await self.store.delete(key)
                    evicted += 1
                    self._locks.pop(key, None)
        if evicted:
            self.logger.debug("Evicted stale rate limit states", evicted=evicted)
        return evicted

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_seconds)
            try:
                await self.cleanup()
            except Exception as e:
                self.logger.error("Rate limit sweep failed", error=str(e))

    def start_cleanup_task(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup_task(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None

    async def fetch_with_rate_limit(self, key: str, op: Callable[[], Awaitable[T]],
                                    max_retries: Optional[int] = None) -> T:
        """Run ``op`` under the limiter, retrying provider 429s with backoff.

        Only 429 responses are retried, whether raised as ``ProviderError`` or as
        an SDK exception carrying ``response.status == 429``; anything else
        propagates on the first failure.
        """
        if max_retries is None:
            max_retries = self.settings.max_retries
        attempt = 0

        while True:
            decision = await self.should_limit(key)
            if decision.limited and decision.retry_after:
                self.logger.info(
                    "Waiting for rate limit to clear",
                    key=key,
                    retry_after_seconds=decision.retry_after,
                    attempt=attempt + 1,
                )
                await self._sleep(decision.retry_after)

            try:
                return await op()
            except Exception as e:
                provider_error = _rate_limited_error(e)
                if provider_error is None:
                    raise

                retry_after_seconds = await self.handle_429(
                    key, provider_error.retry_after, provider_error.rate_limit_remaining
                )
                attempt += 1
                if attempt >= max_retries:
                    self.logger.error(
                        "Max retries exceeded for rate limited call",
                        key=key,
                        attempts=attempt,
                        last_retry_after=retry_after_seconds,
                    )
                    raise ProviderRateLimitedError(
                        f"Rate limit retries exhausted for key: {key}",
                        rate_limit_key=key,
                        retry_after_seconds=retry_after_seconds,
                        original_error=e,
                        retry_count=attempt,
                        max_retries=max_retries,
                    ) from e

                self.logger.info(
                    "Retrying after 429",
                    key=key,
                    attempt=attempt + 1,
                    retry_after_seconds=retry_after_seconds,
                    max_retries=max_retries,
                )
                await self._sleep(retry_after_seconds)


def rate_limit_key(caller: str, provider: str) -> str:
    """Build the caller+provider key that scopes a rate-limit window."""
    return f"{caller}:{provider}"
