"""HTTP middleware for request correlation and rate limit bookkeeping.

- ``request_id_middleware`` accepts an incoming X-Request-ID header or
  generates a UUID, stores it in contextvars for log correlation and echoes
  it back with the request duration.
- ``rate_limit_outcome_middleware`` finishes the work of the rate limit
  dependency once the response exists: it makes sure quota headers reach
  the client even when the route failed, and reports the final status code
  to every decision taken for the request.

Usage:
    app.middleware("http")(rate_limit_outcome_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from admission.core.config import settings
from admission.core.exception_handlers import general_exception_handler
from admission.core.logging import clear_request_id, set_request_id
from admission.core.rate_limit import recorded_decisions


async def request_id_middleware(request: Request, call_next) -> Response:
    """Generate or propagate the request correlation id.

    If the client provides the configured header (``LOG_REQUEST_ID_HEADER``,
    X-Request-ID by default) its value is reused; otherwise a new UUID is
    generated.

    Side Effects:
        - Sets request_id in contextvars for the duration of the request
        - Adds the request id header to the response
        - Adds X-Request-Duration-ms header to the response
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def rate_limit_outcome_middleware(request: Request, call_next) -> Response:
    """Apply quota headers and report the response status to limiters.

    Unhandled route errors on rate limited requests are rendered here by the
    generic 500 handler, so the quota headers survive and profiles skipping
    failed requests still uncount them. Requests that were never evaluated
    re-raise to the outer error middleware.
    """

    try:
        response: Response = await call_next(request)
    except Exception as exc:
        if not recorded_decisions(request):
            raise
        response = await general_exception_handler(request, exc)

    for decision in recorded_decisions(request):
        for name, value in decision.headers.items():
            response.headers.setdefault(name, value)
        decision.complete(response.status_code)
    return response
