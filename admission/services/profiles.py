"""Predefined rate limit profiles.

Five endpoint classes share the same ``Limiter`` implementation and differ
only in window, quota and message:

  • general        – 100 per 15 min (regular API traffic)
  • auth           – 5 per 15 min   (login attempts)
  • password_reset – 3 per hour     (reset emails)
  • registration   – 3 per hour     (account creation per address)
  • strict         – 10 per hour    (sensitive mutating operations)

Each profile owns an independent window store. The registry is built once
per application and destroyed with it.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import replace
from typing import Callable, Iterator

from admission.adapters.rate_limit.in_memory import InMemoryWindowStore
from admission.core.config import AppSettings
from admission.services.limiter import Limiter, LimiterPolicy

logger = logging.getLogger(__name__)

GENERAL = "general"
AUTH = "auth"
PASSWORD_RESET = "password_reset"
REGISTRATION = "registration"
STRICT = "strict"

_MINUTE = 60.0
_HOUR = 60 * _MINUTE

PROFILE_POLICIES: dict[str, LimiterPolicy] = {
    GENERAL: LimiterPolicy(
        window_seconds=15 * _MINUTE,
        max_requests=100,
        message="Too many requests from this IP, please try again later",
    ),
    AUTH: LimiterPolicy(
        window_seconds=15 * _MINUTE,
        max_requests=5,
        message="Too many authentication attempts, please try again later",
    ),
    PASSWORD_RESET: LimiterPolicy(
        window_seconds=_HOUR,
        max_requests=3,
        message="Too many password reset attempts, please try again later",
    ),
    REGISTRATION: LimiterPolicy(
        window_seconds=_HOUR,
        max_requests=3,
        message="Too many registration attempts, please try again later",
    ),
    STRICT: LimiterPolicy(
        window_seconds=_HOUR,
        max_requests=10,
        message="Rate limit exceeded for this operation",
    ),
}


def scale_policy(policy: LimiterPolicy, multiplier: float) -> LimiterPolicy:
    """Scale a policy's quota, flooring and keeping at least one request."""
    if multiplier == 1.0:
        return policy
    return replace(policy, max_requests=max(1, math.floor(policy.max_requests * multiplier)))


class LimiterRegistry:
    """Named limiters owned by one application instance."""

    def __init__(self, limiters: dict[str, Limiter]) -> None:
        self._limiters = dict(limiters)

    def __getitem__(self, name: str) -> Limiter:
        try:
            return self._limiters[name]
        except KeyError:
            raise KeyError(f"Unknown rate limit profile: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._limiters

    def __iter__(self) -> Iterator[Limiter]:
        return iter(self._limiters.values())

    def __len__(self) -> int:
        return len(self._limiters)

    def names(self) -> list[str]:
        return list(self._limiters)

    def destroy_all(self) -> None:
        """Stop every store's sweep and drop all counters."""
        for limiter in self._limiters.values():
            limiter.destroy()


def build_limiters(
    app_settings: AppSettings,
    *,
    clock: Callable[[], float] = time.time,
) -> LimiterRegistry:
    """Build the five predefined profiles from application settings.

    Args:
        app_settings: Source of the opt-out flag, quota multiplier and sweep
            interval.
        clock: Time source shared by limiters and their stores.

    Returns:
        LimiterRegistry keyed by profile name.
    """

    enabled = not app_settings.disable_rate_limiting
    if not enabled:
        logger.warning("rate_limit.disabled", extra={"profiles": list(PROFILE_POLICIES)})

    limiters = {
        name: Limiter(
            scale_policy(policy, app_settings.rate_limit_multiplier),
            InMemoryWindowStore(
                sweep_interval_seconds=app_settings.rate_limit_sweep_interval_seconds,
                clock=clock,
            ),
            name=name,
            enabled=enabled,
            clock=clock,
        )
        for name, policy in PROFILE_POLICIES.items()
    }
    return LimiterRegistry(limiters)
