"""Rate limiting dependency for FastAPI routes.

This module wires the limiter profiles into the HTTP layer.

Design goals:
- Minimal coupling: routes declare ``Depends(rate_limit("auth"))`` only.
- Explicit ownership: limiters live on ``app.state.limiters`` and are built
  and destroyed by the application factory, never at import time.
- Continuation: a route runs only when the dependency returns; a rejection
  raises ``RateLimitExceededError`` so the route is never invoked.

Decisions are recorded on ``request.state`` so the outcome middleware can
copy quota headers onto the final response and report the status code back
for profiles that skip successful or failed requests.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Request, Response

from admission.core.errors import RateLimitExceededError
from admission.services.limiter import RATE_LIMIT_EXCEEDED, Decision, RequestContext
from admission.services.profiles import LimiterRegistry

_STATE_ATTR = "rate_limit_decisions"


def get_limiters(request: Request) -> LimiterRegistry:
    """Return the limiter registry attached to the running application."""

    return request.app.state.limiters


def build_request_context(request: Request, response: Response | None = None) -> RequestContext:
    """Translate a Starlette request into a limiter request context.

    Args:
        request: Incoming request.
        response: Sub-response whose headers FastAPI merges into the final
            response; used as the limiter's header channel.

    Returns:
        RequestContext: Caller address (None if unknown), method, path and
            header channel.
    """

    return RequestContext(
        client_host=request.client.host if request.client else None,
        method=request.method,
        path=request.url.path,
        response_headers=response.headers if response is not None else None,
    )


def recorded_decisions(request: Request) -> list[Decision]:
    """Decisions taken for this request so far (empty when none)."""

    return getattr(request.state, _STATE_ATTR, None) or []


def _record(request: Request, decision: Decision) -> None:
    decisions = getattr(request.state, _STATE_ATTR, None)
    if decisions is None:
        decisions = []
        setattr(request.state, _STATE_ATTR, decisions)
    decisions.append(decision)


def rate_limit(profile: str) -> Callable[[Request, Response], Awaitable[Decision]]:
    """Build a FastAPI dependency enforcing the named limiter profile.

    Args:
        profile: Registry name (e.g., ``"general"``, ``"auth"``).

    Returns:
        Async dependency returning the allowed ``Decision``.
    """

    async def enforce_rate_limit(request: Request, response: Response) -> Decision:
        """Count the request against ``profile``.

        Raises:
            RateLimitExceededError: 429 when the caller exhausted the quota.
        """

        limiter = get_limiters(request)[profile]
        decision = limiter.evaluate(build_request_context(request, response))
        _record(request, decision)

        if decision.allowed:
            return decision

        raise RateLimitExceededError(
            code=RATE_LIMIT_EXCEEDED,
            message=limiter.policy.message,
            details={"retry_after": float(decision.retry_after or 0), "http_status": 429},
            body=decision.body or {},
            headers=decision.headers,
        )

    enforce_rate_limit.__name__ = f"enforce_{profile}_rate_limit"
    return enforce_rate_limit
