"""Rate limiting configuration.

This module provides rate limiting for the OAuth endpoints using slowapi.
Uses per-instance memory storage; each Cloud Run / Cloud Functions instance
limits independently.

Note: This is a separate module to avoid circular imports. The `limiter`
instance is imported by both main.py and api.py.

The route decorators are shared by every app, but the limit belongs to the
settings each app was created with. `bind_app_rate_limit` puts the serving
app's limit into a context variable for the duration of the request, and
`oauth_rate_limit` reads it back when slowapi evaluates the limit.
"""

from contextvars import ContextVar

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address

from workspace_oauth_proxy.config import DEFAULT_RATE_LIMIT

_current_rate_limit: ContextVar[str] = ContextVar("rate_limit", default=DEFAULT_RATE_LIMIT)


def oauth_rate_limit() -> str:
    """Limit applied to each OAuth route, from the serving app's settings."""
    return _current_rate_limit.get()


async def bind_app_rate_limit(request: Request, call_next):
    """Make the app's configured rate limit visible to the route decorators."""
    token = _current_rate_limit.set(request.app.state.settings.rate_limit)
    try:
        return await call_next(request)
    finally:
        _current_rate_limit.reset(token)


# Rate limiter with per-instance memory storage
limiter = Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    logger.warning(
        "Rate limit exceeded",
        extra={"path": request.url.path, "client": get_remote_address(request)},
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limited",
            "error_description": "Rate limit exceeded. Please try again later.",
            "retryable": True,
            "request_id": getattr(request.state, "request_id", ""),
        },
    )
