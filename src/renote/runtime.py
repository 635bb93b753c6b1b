"""Per-run context passed explicitly through the tracker client.

Nothing about a run (credential, rate-limit bookkeeping, how to sleep, what
time it is) lives in module globals. Tests build a RunContext with a fake
clock and a recording sleep and get a fully reproducible run.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field

from renote.config import RenoteConfig
from renote.errors import AuthError

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


@dataclass
class RateLimitState:
    """Last rate-limit headers seen from the tracker.

    Attributes:
        remaining: Requests left in the current window, if reported
        reset_at: Epoch seconds when the window resets, if reported
        waits: Number of times the run slept for a rate-limit reset
    """

    remaining: int | None = None
    reset_at: float | None = None
    waits: int = 0

    def update(self, headers: Mapping[str, str]) -> None:
        remaining = headers.get("x-ratelimit-remaining", "").strip()
        reset = headers.get("x-ratelimit-reset", "").strip()
        if remaining.isdigit():
            self.remaining = int(remaining)
        if reset.isdigit():
            self.reset_at = float(reset)

    def pending_wait(self, now: float) -> float:
        """Seconds to hold the next request when the quota is spent, else 0."""
        if self.remaining != 0 or self.reset_at is None:
            return 0.0
        self.remaining = None
        return max(0.0, self.reset_at - now)


@dataclass
class RunContext:
    """Explicit state for a single renote invocation.

    Attributes:
        token: GitHub token
        config: Validated configuration
        sleep: Coroutine used for every backoff and rate-limit wait
        clock: Wall clock in epoch seconds, used for rate-limit resets
        rate_limit: Bookkeeping updated from response headers
    """

    token: str
    config: RenoteConfig = field(default_factory=RenoteConfig)
    sleep: SleepFn = asyncio.sleep
    clock: ClockFn = time.time
    rate_limit: RateLimitState = field(default_factory=RateLimitState)

    @classmethod
    def from_env(cls, config: RenoteConfig, token: str | None = None) -> RunContext:
        """Build a context, resolving the token from GITHUB_TOKEN.

        Raises:
            AuthError: If no token is available.
        """
        token = token or os.environ.get("GITHUB_TOKEN", "")
        if not token:
            raise AuthError(
                "GITHUB_TOKEN is not set. Export a GitHub token or pass "
                "--github-token."
            )
        return cls(token=token, config=config)
