"""Pydantic schemas for rate limit responses."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitErrorDetail(BaseModel):
    """Body of a 429 rejection."""

    code: str = Field(..., description="Always 'RATE_LIMIT_EXCEEDED'.")
    message: str = Field(..., description="Profile-specific rejection message.")
    timestamp: str = Field(..., description="Rejection time, ISO-8601 UTC.")
    retryAfter: int = Field(
        ..., description="Seconds until the caller's current window ends."
    )


class RateLimitErrorResponse(BaseModel):
    """Envelope returned with HTTP 429."""

    error: RateLimitErrorDetail


class LimiterProfile(BaseModel):
    """Public view of one configured limiter profile."""

    name: str = Field(..., description="Profile name (e.g., 'auth').")
    window_seconds: float = Field(..., description="Counting window length.")
    max_requests: int = Field(..., description="Requests allowed per window.")
    message: str = Field(..., description="Message returned when throttled.")
    enabled: bool = Field(
        ..., description="False when rate limiting is disabled process-wide."
    )


class LimiterProfilesResponse(BaseModel):
    """List of configured limiter profiles."""

    profiles: list[LimiterProfile] = Field(default_factory=list)
