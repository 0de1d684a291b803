"""HTTP-level tests for the rate limit dependency, handler and middleware."""

from __future__ import annotations

import pytest
from fastapi import APIRouter, Depends, HTTPException
from fastapi.testclient import TestClient

from admission.adapters.rate_limit.in_memory import InMemoryWindowStore
from admission.core.app_factory import create_app
from admission.core.config import AppSettings
from admission.core.rate_limit import rate_limit
from admission.services.limiter import Limiter, LimiterPolicy
from admission.services.profiles import AUTH, STRICT, LimiterRegistry, build_limiters

router = APIRouter()
calls: list[str] = []


@router.post("/login", dependencies=[Depends(rate_limit(AUTH))])
def login(ok: bool = True) -> dict:
    calls.append("login")
    if not ok:
        raise HTTPException(status_code=401, detail="bad credentials")
    return {"status": "logged_in"}


@router.post("/rotate-keys", dependencies=[Depends(rate_limit(STRICT))])
def rotate_keys() -> dict:
    calls.append("rotate_keys")
    raise RuntimeError("key vault unavailable")


@pytest.fixture(autouse=True)
def _reset_calls():
    calls.clear()


def _client(app_settings: AppSettings | None = None, **kwargs) -> TestClient:
    app = create_app(
        app_settings or AppSettings(),
        configure_logs=False,
        extra_routers=(router,),
        **kwargs,
    )
    return TestClient(app)


def test_allowed_response_carries_quota_headers() -> None:
    client = _client()

    resp = client.post("/v1/login")

    assert resp.status_code == 200
    assert resp.headers["X-RateLimit-Limit"] == "5"
    assert resp.headers["X-RateLimit-Remaining"] == "4"
    assert resp.headers["X-RateLimit-Reset"].endswith("Z")
    assert resp.headers.get("X-Request-ID")


def test_rejection_returns_429_body_and_skips_route() -> None:
    client = _client()

    for _ in range(5):
        assert client.post("/v1/login").status_code == 200

    resp = client.post("/v1/login")

    assert resp.status_code == 429
    assert calls == ["login"] * 5
    error = resp.json()["error"]
    assert set(error) == {"code", "message", "timestamp", "retryAfter"}
    assert error["code"] == "RATE_LIMIT_EXCEEDED"
    assert error["message"] == "Too many authentication attempts, please try again later"
    assert error["retryAfter"] > 0
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert resp.headers["Retry-After"] == str(error["retryAfter"])


def test_headers_survive_route_errors() -> None:
    client = _client()

    resp = client.post("/v1/login", params={"ok": False})

    assert resp.status_code == 401
    assert resp.headers["X-RateLimit-Remaining"] == "4"


def test_disabled_rate_limiting_lets_everything_through() -> None:
    client = _client(AppSettings(disable_rate_limiting=True))

    responses = [client.post("/v1/login") for _ in range(20)]

    assert all(r.status_code == 200 for r in responses)
    assert all("X-RateLimit-Limit" not in r.headers for r in responses)


def test_skip_successful_requests_counts_only_failures() -> None:
    def factory(app_settings: AppSettings) -> LimiterRegistry:
        policy = LimiterPolicy(window_seconds=900, max_requests=2, skip_successful_requests=True)
        store = InMemoryWindowStore(auto_sweep=False)
        return LimiterRegistry({AUTH: Limiter(policy, store, name=AUTH)})

    with _client(limiter_factory=factory) as client:
        for _ in range(5):
            assert client.post("/v1/login").status_code == 200

        assert client.post("/v1/login", params={"ok": False}).status_code == 401
        assert client.post("/v1/login", params={"ok": False}).status_code == 401
        assert client.post("/v1/login").status_code == 429


def test_unhandled_route_error_keeps_quota_headers() -> None:
    app = create_app(AppSettings(), configure_logs=False, extra_routers=(router,))
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.post("/v1/rotate-keys")

    assert resp.status_code == 500
    assert calls == ["rotate_keys"]
    assert resp.json()["error"]["code"] == "internal_server_error"
    assert "key vault unavailable" not in resp.text
    assert resp.headers["X-RateLimit-Limit"] == "10"
    assert resp.headers["X-RateLimit-Remaining"] == "9"
    assert resp.headers["X-RateLimit-Reset"].endswith("Z")


def test_unhandled_route_error_reported_to_skip_failed_profile() -> None:
    store = InMemoryWindowStore(auto_sweep=False)

    def factory(app_settings: AppSettings) -> LimiterRegistry:
        policy = LimiterPolicy(window_seconds=3600, max_requests=1, skip_failed_requests=True)
        return LimiterRegistry({STRICT: Limiter(policy, store, name=STRICT)})

    app = create_app(AppSettings(), configure_logs=False, extra_routers=(router,), limiter_factory=factory)
    with TestClient(app, raise_server_exceptions=False) as client:
        assert client.post("/v1/rotate-keys").status_code == 500
        assert client.post("/v1/rotate-keys").status_code == 500

    assert calls == ["rotate_keys", "rotate_keys"]


def test_limits_endpoint_lists_profiles() -> None:
    client = _client()

    resp = client.get("/v1/limits")

    assert resp.status_code == 200
    profiles = {p["name"]: p for p in resp.json()["profiles"]}
    assert set(profiles) == {"general", "auth", "password_reset", "registration", "strict"}
    assert profiles["auth"]["max_requests"] == 5
    assert resp.headers["X-RateLimit-Limit"] == "100"


def test_health_is_not_rate_limited() -> None:
    client = _client()

    resp = client.get("/health")

    assert resp.status_code == 200
    assert "X-RateLimit-Limit" not in resp.headers


def test_shutdown_destroys_limiter_stores() -> None:
    app = create_app(AppSettings(), configure_logs=False, extra_routers=(router,))
    registry: LimiterRegistry = app.state.limiters

    with TestClient(app) as client:
        client.post("/v1/login")
        assert len(registry[AUTH].store) == 1

    assert len(registry[AUTH].store) == 0


def test_default_factory_builds_all_profiles() -> None:
    registry = build_limiters(AppSettings())

    assert len(registry) == 5
