"""Health check API endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check() -> dict:
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "workspace-oauth-proxy"}


@router.get("/ready")
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness check for Cloud Run: the client secret must exist."""
    secret_ready = await request.app.state.secret_accessor.check(request.app.state.secret_ref)
    return JSONResponse(
        status_code=200 if secret_ready else 503,
        content={
            "status": "ready" if secret_ready else "not_ready",
            "service": "workspace-oauth-proxy",
            "environment": request.app.state.settings.environment,
            "secret": "present" if secret_ready else "missing",
        },
    )
