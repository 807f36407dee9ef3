"""HTTP middleware for request correlation and caller identity.

``request_id_middleware`` reuses the caller's correlation header (or makes
a UUID4), binds it for log records for the duration of the request, and
echoes it back together with ``X-Request-Duration-ms``.

``auth_context_middleware`` resolves the caller's user id from a bearer token
(when one is present and valid) and stores it on ``request.state`` so the rate
limiter, which runs next, can key quotas per user.

Usage:
    app.middleware("http")(auth_context_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from app.core.auth import resolve_optional_user_id
from app.core.logging import bind_request_id, reset_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate a correlation id through logs and the response.

    The header name comes from ``LOG_REQUEST_ID_HEADER`` (``X-Request-ID``).
    Responses produced below this middleware, including rate limit
    rejections, carry the same id the logs were stamped with.
    """

    header_name = request.app.state.settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    token = bind_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        reset_request_id(token)

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def auth_context_middleware(request: Request, call_next) -> Response:
    """Attach the caller's user id to ``request.state`` when resolvable."""

    user_id = resolve_optional_user_id(
        request.headers.get("Authorization"),
        request.app.state.settings.auth,
    )
    if user_id is not None:
        request.state.user_id = user_id
    return await call_next(request)
