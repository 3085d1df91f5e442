"""Workspace OAuth proxy.

Stateless token exchange service for the Google Workspace extension. Local
clients send authorization codes here; the proxy adds the confidential
client secret from Secret Manager, exchanges the code with Google and
returns only the tokens.

Run with: uvicorn --factory workspace_oauth_proxy.main:create_app
"""

import re
import uuid
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded

from workspace_oauth_proxy import api, health
from workspace_oauth_proxy.config import Settings, get_settings, resolve_oauth_config
from workspace_oauth_proxy.errors import InvalidRequest, ProxyError
from workspace_oauth_proxy.handler import ExchangeHandler
from workspace_oauth_proxy.logging import configure_logging
from workspace_oauth_proxy.rate_limit import (
    bind_app_rate_limit,
    limiter,
    rate_limit_exceeded_handler,
)
from workspace_oauth_proxy.secret_accessor import (
    GoogleSecretStore,
    SecretAccessor,
    SecretStore,
)
from workspace_oauth_proxy.token_client import TokenExchangeClient, create_http_client

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


async def add_request_id(request: Request, call_next):
    """Attach a request ID for log correlation.

    A well-formed X-Request-ID from the caller is reused, otherwise a new
    one is generated.
    """
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    request_id = supplied if _REQUEST_ID_PATTERN.match(supplied) else str(uuid.uuid4())
    request.state.request_id = request_id

    with logger.contextualize(request_id=request_id):
        response = await call_next(request)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    """Render a ProxyError as a structured error body."""
    request_id = _request_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        extra={
            "path": request.url.path,
            "error_kind": exc.kind,
            "error": str(exc),
            "request_id": request_id,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(request_id))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed bodies as invalid_request without echoing the input."""
    fields = sorted({".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()})
    return await proxy_error_handler(request, InvalidRequest(f"Invalid fields: {fields}"))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "request_id": _request_id(request)},
    )
    return JSONResponse(
        status_code=500,
        content=ProxyError().to_dict(_request_id(request)),
    )


def create_app(
    settings: Settings | None = None,
    *,
    secret_store: SecretStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to environment settings)
        secret_store: Secret store (injectable for testing). Defaults to
            Google Secret Manager.
        http_client: HTTP client for the token endpoint (injectable for
            testing).
    """
    settings = settings or get_settings()

    # Configure structured JSON logging for Cloud Logging
    configure_logging(
        is_production=settings.is_production,
        log_level=settings.log_level,
    )

    # Resolved once; every request sees the same client identity
    oauth_config = resolve_oauth_config(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        store = secret_store or GoogleSecretStore(project=settings.google_cloud_project)
        client = http_client or create_http_client(settings.token_timeout)

        accessor = SecretAccessor(
            store,
            timeout=settings.secret_timeout,
            retry_attempts=settings.secret_retry_attempts,
        )
        secret_ref = settings.secret_reference()

        # Store shared, read-only collaborators in app.state for dependency injection
        app.state.secret_accessor = accessor
        app.state.secret_ref = secret_ref
        app.state.handler = ExchangeHandler(
            config=oauth_config,
            secret_ref=secret_ref,
            secret_accessor=accessor,
            token_client=TokenExchangeClient(
                client, token_uri=settings.token_uri, timeout=settings.token_timeout
            ),
        )

        logger.info(
            "Starting OAuth proxy",
            extra={
                "port": settings.port,
                "client_id": oauth_config.client_id,
                "redirect_uri": oauth_config.redirect_uri,
                "secret": secret_ref.logical_name,
                "secret_version": secret_ref.version,
            },
        )

        yield

        # Only close what this lifespan created
        if http_client is None:
            await client.aclose()
        if secret_store is None:
            await store.close()
        logger.info("Shutting down OAuth proxy")

    app = FastAPI(
        title="Workspace OAuth Proxy",
        description="Token exchange proxy for the Google Workspace extension",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
    )

    # Exception handlers
    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Per-app settings, read by the health and rate limit layers at request time
    app.state.settings = settings

    # Rate limiting - use the shared limiter instance
    app.state.limiter = limiter

    app.middleware("http")(bind_app_rate_limit)
    app.middleware("http")(add_request_id)

    app.include_router(health.router)
    app.include_router(api.router)

    return app


def run() -> None:
    """Serve the proxy with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "workspace_oauth_proxy.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        reload=not settings.is_production,
    )


if __name__ == "__main__":
    run()
