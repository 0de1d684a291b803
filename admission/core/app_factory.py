"""Application factory for the FastAPI app.

Centralizes app construction (logging, limiters, middleware, handlers,
routers) so tests can build isolated instances with their own settings and
their own limiter stores.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from admission.api.routes import health_router, limits_router
from admission.core.config import AppSettings, settings
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import rate_limit_outcome_middleware, request_id_middleware
from admission.services.profiles import LimiterRegistry, build_limiters

OPENAPI_TAGS = [
    {
        "name": "Rate Limits",
        "description": "Configured admission profiles. Throttled calls return 429.",
    },
    {
        "name": "Health",
        "description": "Liveness checks (never rate limited).",
    },
]


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    registry: LimiterRegistry = app.state.limiters
    registry.destroy_all()


def create_app(
    app_settings: AppSettings | None = None,
    *,
    configure_logs: bool = True,
    extra_routers: tuple = (),
    limiter_factory: Callable[[AppSettings], LimiterRegistry] = build_limiters,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Overrides the global application settings.
        configure_logs: Reconfigure the root logger (disable in tests that
            capture logs with caplog).
        extra_routers: Additional routers mounted under /v1.
        limiter_factory: Builds the limiter registry from settings.

    Returns:
        Configured FastAPI app. Limiter stores are destroyed on shutdown.
    """
    cfg = app_settings or settings.app

    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(settings.log)

    app = FastAPI(
        title="Admission Control API",
        description=(
            "Per-caller rate limiting for general, authentication, password "
            "reset, registration and strict endpoint classes. Every limited "
            "response carries X-RateLimit-Limit, X-RateLimit-Remaining and "
            "X-RateLimit-Reset headers."
        ),
        version="0.1.0",
        openapi_tags=OPENAPI_TAGS,
        lifespan=_lifespan,
    )
    app.state.limiters = limiter_factory(cfg)

    # Middleware: the last registered runs outermost
    app.middleware("http")(rate_limit_outcome_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    for router in extra_routers:
        app.include_router(router, prefix="/v1")
    app.include_router(health_router)

    return app
