from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from admission.core.rate_limit import get_limiters, rate_limit
from admission.schemas.limits import (
    LimiterProfile,
    LimiterProfilesResponse,
    RateLimitErrorResponse,
)
from admission.services.profiles import GENERAL

router = APIRouter(tags=["Rate Limits"])


@router.get(
    "/limits",
    response_model=LimiterProfilesResponse,
    responses={429: {"model": RateLimitErrorResponse}},
    dependencies=[Depends(rate_limit(GENERAL))],
)
def list_limits(request: Request) -> LimiterProfilesResponse:
    """List the configured rate limit profiles.

    Counted against the general profile like any other API call.
    """

    return LimiterProfilesResponse(
        profiles=[
            LimiterProfile(
                name=limiter.name,
                window_seconds=limiter.policy.window_seconds,
                max_requests=limiter.policy.max_requests,
                message=limiter.policy.message,
                enabled=limiter.enabled,
            )
            for limiter in get_limiters(request)
        ]
    )
