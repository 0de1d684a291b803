"""Rate limit decisions for inbound requests.

A ``Limiter`` turns one counter increment into a pass/reject ``Decision``:

1. Derive the caller key from the request context (client address by
   default, a shared ``unknown`` bucket when the address is missing).
2. Count the request in the limiter's window store.
3. Compute quota headers and write them to the response channel if one is
   available. Header writes are best effort and never fail the request.
4. Reject with a structured 429 body once the count passes ``max_requests``.

Limiters that skip successful or failed requests adjust the counter after the
fact through ``Decision.complete``, which the HTTP layer calls once the
downstream status code is known.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from admission.adapters.rate_limit.base import AbstractWindowStore
from admission.adapters.rate_limit.in_memory import InMemoryWindowStore
from admission.core.errors import ValidationAppError
from admission.core.logging import hash_key

logger = logging.getLogger(__name__)

RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
DEFAULT_MESSAGE = "Too many requests, please try again later"
UNKNOWN_CLIENT = "unknown"
KEY_PREFIX = "rate_limit"

HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"


def _isoformat(epoch_seconds: float) -> str:
    """Render epoch seconds as an ISO-8601 UTC string with millisecond precision."""
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class LimiterPolicy:
    """Immutable configuration of a limiter.

    Attributes:
        window_seconds: Length of one counting window.
        max_requests: Requests allowed per key within one window.
        message: Human-readable message used in the rejection body.
        skip_successful_requests: Uncount requests answered with status < 400.
        skip_failed_requests: Uncount requests answered with status >= 400.

    Raises:
        ValidationAppError: If window_seconds or max_requests is not positive.
    """

    window_seconds: float
    max_requests: int
    message: str = DEFAULT_MESSAGE
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValidationAppError(
                code="invalid_rate_limit_policy",
                message="window_seconds must be > 0",
                details={"field": "window_seconds", "actual_value": self.window_seconds},
            )
        if self.max_requests <= 0:
            raise ValidationAppError(
                code="invalid_rate_limit_policy",
                message="max_requests must be > 0",
                details={"field": "max_requests", "actual_value": self.max_requests},
            )

    @property
    def tracks_outcome(self) -> bool:
        return self.skip_successful_requests or self.skip_failed_requests

    def should_skip(self, status_code: int) -> bool:
        """Return True if a response with ``status_code`` must not be counted."""
        if status_code < 400:
            return self.skip_successful_requests
        return self.skip_failed_requests


@dataclass
class RequestContext:
    """What a limiter needs to know about one inbound request.

    ``response_headers`` is the response channel the limiter annotates with
    quota headers. It may be None, or a mapping that refuses writes once the
    response has been sent.
    """

    client_host: str | None = None
    method: str = "GET"
    path: str = "/"
    response_headers: MutableMapping[str, str] | None = None


def client_address_key(context: RequestContext) -> str | None:
    """Default key extractor: the caller's network address."""
    return context.client_host


@dataclass
class Decision:
    """Outcome of ``Limiter.evaluate`` for a single request.

    Attributes:
        allowed: Whether the request may continue downstream.
        limit: Max requests per window of the evaluating policy.
        remaining: Requests left in the window (never negative).
        key: Caller key the request was counted under (None when disabled).
        reset_at: UNIX epoch seconds when the window ends (None when disabled).
        retry_after: Seconds until the window ends (rejections only).
        headers: Quota headers for the response.
        body: Rejection payload (rejections only).
    """

    allowed: bool
    limit: int
    remaining: int
    key: str | None = None
    reset_at: float | None = None
    retry_after: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] | None = None
    _on_complete: Callable[[int], None] | None = field(default=None, repr=False)
    _completed: bool = field(default=False, repr=False)

    @property
    def status_code(self) -> int:
        return 200 if self.allowed else 429

    def complete(self, status_code: int) -> None:
        """Report the downstream response status for this request.

        Only the first call has an effect. Failures while adjusting the
        counter are logged and never raised.
        """
        if self._completed:
            return
        self._completed = True
        if self._on_complete is None:
            return
        try:
            self._on_complete(status_code)
        except Exception:
            logger.warning(
                "rate_limit.outcome_adjust_failed",
                extra={"status_code": status_code},
                exc_info=True,
            )


class Limiter:
    """Fixed-window rate limiter for one endpoint class.

    The limiter holds its window store but does not share it: each profile
    gets its own store so counters of different policies never collide.
    """

    def __init__(
        self,
        policy: LimiterPolicy,
        store: AbstractWindowStore | None = None,
        *,
        name: str = "default",
        enabled: bool = True,
        key_func: Callable[[RequestContext], str | None] = client_address_key,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self.name = name
        self.enabled = enabled
        self.store = store if store is not None else InMemoryWindowStore(clock=clock)
        self._key_func = key_func
        self._clock = clock

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"Limiter(name={self.name!r}, max_requests={self.policy.max_requests}, "
            f"window_seconds={self.policy.window_seconds}, enabled={self.enabled})"
        )

    def build_key(self, context: RequestContext) -> str:
        """Namespaced caller key; falls back to a shared bucket."""
        try:
            raw = self._key_func(context)
        except Exception:
            logger.warning(
                "rate_limit.key_extraction_failed",
                extra={"limiter": self.name},
                exc_info=True,
            )
            raw = None
        return f"{KEY_PREFIX}:{raw or UNKNOWN_CLIENT}"

    def evaluate(self, context: RequestContext) -> Decision:
        """Count the request and decide whether it may continue.

        Args:
            context: Request context carrying the caller address and the
                response header channel.

        Returns:
            Decision: allowed, or rejected with a 429 body and retry hint.
        """

        limit = self.policy.max_requests
        if not self.enabled:
            return Decision(allowed=True, limit=limit, remaining=limit)

        key = self.build_key(context)
        current = self.store.increment(key, self.policy.window_seconds)
        remaining = max(0, limit - current.count)
        headers = {
            HEADER_LIMIT: str(limit),
            HEADER_REMAINING: str(remaining),
            HEADER_RESET: _isoformat(current.reset_at),
        }
        self._write_headers(context, headers)

        if current.count > limit:
            now = self._clock()
            retry_after = max(0, math.ceil(current.reset_at - now))
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "limiter": self.name,
                    "key_hash": hash_key(key),
                    "path": context.path,
                    "method": context.method,
                    "count": current.count,
                    "limit": limit,
                    "retry_after_s": retry_after,
                },
            )
            return Decision(
                allowed=False,
                limit=limit,
                remaining=remaining,
                key=key,
                reset_at=current.reset_at,
                retry_after=retry_after,
                headers={**headers, HEADER_RETRY_AFTER: str(retry_after)},
                body={
                    "error": {
                        "code": RATE_LIMIT_EXCEEDED,
                        "message": self.policy.message,
                        "timestamp": _isoformat(now),
                        "retryAfter": retry_after,
                    }
                },
            )

        logger.debug(
            "rate_limit.allowed",
            extra={
                "limiter": self.name,
                "key_hash": hash_key(key),
                "limit": limit,
                "remaining": remaining,
            },
        )

        on_complete = None
        if self.policy.tracks_outcome:
            on_complete = self._outcome_hook(key, current.reset_at)

        return Decision(
            allowed=True,
            limit=limit,
            remaining=remaining,
            key=key,
            reset_at=current.reset_at,
            headers=headers,
            _on_complete=on_complete,
        )

    def reset(self, context: RequestContext) -> None:
        """Forget the caller's counter (e.g., after a successful login)."""
        self.store.reset(self.build_key(context))

    def destroy(self) -> None:
        self.store.destroy()

    def _outcome_hook(self, key: str, reset_at: float) -> Callable[[int], None]:
        # Bound to the window that counted the request; a rolled-over window is left alone.
        def adjust(status_code: int) -> None:
            if self.policy.should_skip(status_code):
                self.store.decrement(key, reset_at=reset_at)

        return adjust

    def _write_headers(self, context: RequestContext, headers: dict[str, str]) -> None:
        channel = context.response_headers
        if channel is None:
            return
        try:
            channel.update(headers)
        except Exception:
            logger.debug(
                "rate_limit.headers_skipped",
                extra={"limiter": self.name},
                exc_info=True,
            )
