"""Tests for the predefined limiter profiles."""

from unittest.mock import Mock

import pytest

from admission.core.config import AppSettings
from admission.services.limiter import RequestContext
from admission.services.profiles import (
    AUTH,
    GENERAL,
    PASSWORD_RESET,
    PROFILE_POLICIES,
    REGISTRATION,
    STRICT,
    build_limiters,
)


@pytest.fixture
def registry(clock: Mock):
    registry = build_limiters(AppSettings(), clock=clock)
    yield registry
    registry.destroy_all()


def _ctx() -> RequestContext:
    return RequestContext(client_host="127.0.0.1", path="/test")


@pytest.mark.parametrize(
    ("profile", "allowed"),
    [
        (AUTH, 5),
        (PASSWORD_RESET, 3),
        (REGISTRATION, 3),
        (STRICT, 10),
        (GENERAL, 100),
    ],
)
def test_profile_allows_quota_then_rejects(registry, profile: str, allowed: int) -> None:
    limiter = registry[profile]

    for _ in range(allowed):
        assert limiter.evaluate(_ctx()).allowed is True

    rejected = limiter.evaluate(_ctx())
    assert rejected.allowed is False
    assert rejected.body["error"]["message"] == PROFILE_POLICIES[profile].message


def test_general_is_permissive(registry) -> None:
    limiter = registry[GENERAL]

    assert all(limiter.evaluate(_ctx()).allowed for _ in range(50))


def test_profiles_have_independent_stores(registry) -> None:
    for _ in range(6):
        registry[AUTH].evaluate(_ctx())

    assert registry[AUTH].evaluate(_ctx()).allowed is False
    assert registry[STRICT].evaluate(_ctx()).allowed is True
    assert len({id(limiter.store) for limiter in registry}) == len(registry)


def test_profiles_differ_only_in_window_quota_and_message() -> None:
    for policy in PROFILE_POLICIES.values():
        assert policy.skip_successful_requests is False
        assert policy.skip_failed_requests is False


def test_registry_lookup() -> None:
    registry = build_limiters(AppSettings())

    assert registry.names() == [GENERAL, AUTH, PASSWORD_RESET, REGISTRATION, STRICT]
    assert AUTH in registry
    with pytest.raises(KeyError):
        registry["missing"]


def test_disable_flag_turns_off_every_profile(clock: Mock) -> None:
    registry = build_limiters(AppSettings(disable_rate_limiting=True), clock=clock)
    try:
        for limiter in registry:
            decisions = [limiter.evaluate(_ctx()) for _ in range(200)]
            assert all(d.allowed for d in decisions)
            assert all(d.headers == {} for d in decisions)
            assert len(limiter.store) == 0
    finally:
        registry.destroy_all()


def test_disable_flag_read_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("DISABLE_RATE_LIMITING", "true")

    assert AppSettings().disable_rate_limiting is True


def test_multiplier_scales_quotas(clock: Mock) -> None:
    registry = build_limiters(AppSettings(rate_limit_multiplier=2.5), clock=clock)
    try:
        assert registry[GENERAL].policy.max_requests == 250
        assert registry[AUTH].policy.max_requests == 12
        assert registry[AUTH].policy.window_seconds == PROFILE_POLICIES[AUTH].window_seconds
    finally:
        registry.destroy_all()


def test_multiplier_keeps_at_least_one_request(clock: Mock) -> None:
    registry = build_limiters(AppSettings(rate_limit_multiplier=0.1), clock=clock)
    try:
        assert registry[PASSWORD_RESET].policy.max_requests == 1
    finally:
        registry.destroy_all()
