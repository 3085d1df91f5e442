"""REST API endpoints for the OAuth proxy.

This module contains all HTTP endpoints. Business logic is delegated to
ExchangeHandler, which is created during application lifespan.

Endpoints:
- POST /exchange      - Exchange an authorization code for tokens (JSON)
- POST /refresh       - Exchange a refresh token for a new access token (JSON)
- GET  /              - OAuth redirect target; exchanges the code and hands
                        the tokens to the local client's loopback server

Failures raise ProxyError and are rendered by the handlers in main.py.
"""

import asyncio
import html
import json
from collections.abc import Awaitable
from typing import TypeVar

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from loguru import logger

from workspace_oauth_proxy.callback import (
    CallbackState,
    build_redirect,
    credentials_payload,
    decode_state,
)
from workspace_oauth_proxy.errors import InvalidRequest, ProxyError
from workspace_oauth_proxy.handler import ExchangeHandler
from workspace_oauth_proxy.models import ExchangeRequest, RefreshRequest, TokenResponse
from workspace_oauth_proxy.rate_limit import limiter, oauth_rate_limit

T = TypeVar("T")

# How often a slow exchange checks whether its caller is still connected
DISCONNECT_POLL_INTERVAL = 0.25

# Nginx's "client closed request"; nobody reads it
CLIENT_CLOSED_REQUEST = 499

# Tokens must not be stored by intermediaries (RFC 6749, section 5.1)
NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

router = APIRouter()


def get_handler(request: Request) -> ExchangeHandler:
    """FastAPI dependency to get the exchange handler from app.state."""
    return request.app.state.handler


# =============================================================================
# Token Exchange Endpoints
# =============================================================================


@router.post("/exchange", response_model=None)
@limiter.limit(oauth_rate_limit)
async def exchange_code(
    request: Request,
    body: ExchangeRequest,
    handler: ExchangeHandler = Depends(get_handler),
) -> Response:
    """Exchange an authorization code (with optional PKCE verifier) for tokens.

    Example body: {"code": "4/0Ab...", "code_verifier": "...", "redirect_uri": "..."}
    """
    tokens = await _abandon_on_disconnect(request, handler.exchange(body))
    if tokens is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return _token_response(tokens)


@router.post("/refresh", response_model=None)
@limiter.limit(oauth_rate_limit)
async def refresh_token(
    request: Request,
    body: RefreshRequest,
    handler: ExchangeHandler = Depends(get_handler),
) -> Response:
    """Exchange a refresh token for a new access token."""
    tokens = await _abandon_on_disconnect(request, handler.refresh(body))
    if tokens is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return _token_response(tokens)


@router.get("/", response_model=None)
@limiter.limit(oauth_rate_limit)
async def oauth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    handler: ExchangeHandler = Depends(get_handler),
) -> RedirectResponse | HTMLResponse:
    """Handle Google's redirect after user consent.

    The tokens go to the loopback URL encoded in `state`, or are shown on a
    page for copy/paste when the local client asked for manual mode.
    """
    try:
        target = decode_state(state or "")
    except InvalidRequest as e:
        logger.warning(
            "Invalid OAuth callback state",
            extra={"reason": str(e)},
        )
        return _error_page()

    if error:
        logger.info(
            "Authorization not granted",
            extra={"provider_error": error[:64]},
        )
        kind = "access_denied" if error == "access_denied" else "authorization_failed"
        return _callback_error(target, kind)

    try:
        tokens = await handler.exchange(ExchangeRequest(code=code))
    except ProxyError as e:
        logger.warning(
            "OAuth callback exchange failed",
            extra={"error_kind": e.kind, "error": str(e)},
        )
        return _callback_error(target, e.kind)

    payload = credentials_payload(tokens)
    logger.info(
        "OAuth callback successful",
        extra={"manual": target.manual},
    )

    if target.manual:
        return _manual_page(payload)

    if target.csrf:
        payload["state"] = target.csrf
    return RedirectResponse(url=build_redirect(target.uri, payload), headers=NO_STORE_HEADERS)


# =============================================================================
# Private Helpers
# =============================================================================


async def _abandon_on_disconnect(request: Request, operation: Awaitable[T]) -> T | None:
    """Await operation, cancelling it if the caller disconnects first.

    Returns None when the operation was abandoned. Cancellation is best
    effort: tokens the provider already issued are simply never returned.
    """
    task = asyncio.ensure_future(operation)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info(
                    "Caller disconnected, abandoning request",
                    extra={"path": request.url.path},
                )
                task.cancel()
                return None
    finally:
        if not task.done():
            task.cancel()


def _token_response(tokens: TokenResponse) -> JSONResponse:
    return JSONResponse(content=tokens.to_dict(), headers=NO_STORE_HEADERS)


def _callback_error(target: CallbackState, kind: str) -> RedirectResponse | HTMLResponse:
    """Send the error kind (and nothing else) back to the local client."""
    if target.manual:
        return _error_page()
    params = {"error": kind}
    if target.csrf:
        params["state"] = target.csrf
    return RedirectResponse(url=build_redirect(target.uri, params))


def _manual_page(payload: dict) -> HTMLResponse:
    credentials = html.escape(json.dumps(payload, indent=2))
    return HTMLResponse(
        content=f"""
        <html>
        <head><title>Authentication Complete</title></head>
        <body style="font-family: sans-serif; padding: 40px;">
            <h1>Authentication Complete</h1>
            <p>Copy the credentials below and paste them into your terminal.</p>
            <pre style="background: #f4f4f4; padding: 16px;">{credentials}</pre>
        </body>
        </html>
        """,
        headers=NO_STORE_HEADERS,
    )


def _error_page() -> HTMLResponse:
    """Generic error page.

    Security: Does not include internal error details in the response.
    Errors are logged server-side for debugging.
    """
    return HTMLResponse(
        content="""
        <html>
        <head><title>Authentication Error</title></head>
        <body style="font-family: sans-serif; padding: 40px;">
            <h1>Authentication Error</h1>
            <p>Authentication failed. Please close this window and try again.</p>
            <p>If the problem persists, contact support.</p>
        </body>
        </html>
        """,
        status_code=400,
    )
