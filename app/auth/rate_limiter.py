"""Fixed-window attempt limiter shared by every sensitive auth endpoint."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

from app.api.errors import RateLimited
from app.auth.models import RateLimitDecision, RateLimitRecord
from app.auth.repository import AuthRepository
from app.core.config import RateLimitPolicy

LOGGER = logging.getLogger(__name__)

# Attempts to settle a race on the same key before giving up and denying.
_MAX_CONTENDED_ROUNDS = 5


class RateLimiter:
    """Counts attempts per key in windows anchored at the first attempt.

    A window opens on the first attempt and closes ``window_seconds`` later no
    matter when the following attempts land. Counting uses conditional store
    updates only, so concurrent requests on one key cannot lose increments.
    """

    def __init__(
        self, repo: AuthRepository, *, clock: Callable[[], float] = time.time
    ) -> None:
        self._repo = repo
        self._clock = clock

    async def check(
        self, key: str, max_attempts: int, window_seconds: int
    ) -> RateLimitDecision:
        """Record one attempt for ``key`` and report whether it is allowed."""
        max_attempts = max(1, int(max_attempts))
        for _ in range(_MAX_CONTENDED_ROUNDS):
            now = self._clock()
            record = await self._repo.increment_rate_limit(
                key, max_attempts=max_attempts, now=now
            )
            if record is not None:
                return RateLimitDecision(
                    allowed=True, remaining=max(0, max_attempts - record.count)
                )

            live = await self._repo.get_live_rate_limit(key, now=now)
            if live is not None:
                if live.count >= max_attempts:
                    return RateLimitDecision(
                        allowed=False,
                        remaining=0,
                        retry_after=max(1, math.ceil(live.expires_at - now)),
                    )
                continue

            fresh = RateLimitRecord(
                key=key, count=1, created_at=now, expires_at=now + window_seconds
            )
            if await self._repo.restart_rate_limit(fresh):
                return RateLimitDecision(allowed=True, remaining=max_attempts - 1)
            if await self._repo.insert_rate_limit(fresh):
                return RateLimitDecision(allowed=True, remaining=max_attempts - 1)

        LOGGER.warning("rate_limit_contended", extra={"rate_limit_key": key})
        return RateLimitDecision(allowed=False, remaining=0, retry_after=1)

    async def reset(self, key: str) -> None:
        """Drop the window for ``key`` so the next attempt starts clean."""
        await self._repo.delete_rate_limit(key)

    async def enforce(self, policy: RateLimitPolicy, subject: str) -> RateLimitDecision:
        """Check ``policy`` for ``subject`` and raise ``RateLimited`` when denied."""
        key = policy.key_for(subject)
        decision = await self.check(key, policy.max_attempts, policy.window_seconds)
        if not decision.allowed:
            retry_after = decision.retry_after or 1
            LOGGER.warning(
                "rate_limited",
                extra={"rate_limit_key": key, "retry_after": retry_after},
            )
            raise RateLimited(retry_after)
        return decision
