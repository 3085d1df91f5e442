"""Outbound calls to the OAuth 2.0 token endpoint.

Each grant is a single form-encoded POST. Nothing is retried here:
authorization codes are single-use, so a second attempt with the same code
fails legitimately once the first one reached the provider.

Response classification:
- 2xx: parsed into TokenResponse (MalformedProviderResponse if unusable)
- 4xx: InvalidGrant
- 5xx, anything else, timeouts and network errors: ProviderUnavailable
"""

import ssl
from typing import Any

import certifi
import httpx
from loguru import logger
from pydantic import SecretStr, ValidationError

from workspace_oauth_proxy.errors import (
    InvalidGrant,
    MalformedProviderResponse,
    ProviderUnavailable,
)
from workspace_oauth_proxy.models import TokenResponse

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_TIMEOUT = 15.0


def create_http_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """Create the shared HTTP client for provider calls."""
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    return httpx.AsyncClient(
        timeout=timeout,
        verify=ssl_context,
        headers={"Accept": "application/json"},
    )


class TokenExchangeClient:
    """Performs authorization code and refresh token grants."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_uri: str = GOOGLE_TOKEN_URI,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._client = http_client
        self._token_uri = token_uri
        self._timeout = timeout

    async def exchange(
        self,
        code: str,
        code_verifier: str | None,
        client_id: str,
        client_secret: SecretStr,
        redirect_uri: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises:
            InvalidGrant: Provider rejected the code (4xx)
            MalformedProviderResponse: 2xx without the required token fields
            ProviderUnavailable: 5xx, timeout or network failure
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
            "client_secret": client_secret.get_secret_value(),
        }
        if code_verifier:
            form["code_verifier"] = code_verifier
        return await self._post("authorization_code", form)

    async def refresh(
        self,
        refresh_token: str,
        client_id: str,
        client_secret: SecretStr,
    ) -> TokenResponse:
        """Exchange a refresh token for a new access token.

        The provider normally omits refresh_token from the result.
        """
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret.get_secret_value(),
        }
        return await self._post("refresh_token", form)

    async def _post(self, grant_type: str, form: dict[str, str]) -> TokenResponse:
        try:
            resp = await self._client.post(self._token_uri, data=form, timeout=self._timeout)
        except httpx.TimeoutException as e:
            logger.warning(
                "Token endpoint timed out",
                extra={"grant_type": grant_type, "timeout_seconds": self._timeout},
            )
            raise ProviderUnavailable("Token endpoint timed out", e) from e
        except httpx.RequestError as e:
            # str(e) of a RequestError never contains the request body
            logger.warning(
                "Token endpoint unreachable",
                extra={"grant_type": grant_type, "error_type": type(e).__name__},
            )
            raise ProviderUnavailable(f"Network error: {type(e).__name__}", e) from e

        if resp.is_success:
            return _parse_token_response(resp, grant_type)

        if resp.is_client_error:
            provider_error = _provider_error_code(resp)
            logger.warning(
                "Token endpoint rejected grant",
                extra={
                    "grant_type": grant_type,
                    "status_code": resp.status_code,
                    "provider_error": provider_error,
                },
            )
            raise InvalidGrant(
                f"Provider rejected grant with {resp.status_code}",
                provider_error=provider_error,
            )

        logger.warning(
            "Token endpoint failed",
            extra={"grant_type": grant_type, "status_code": resp.status_code},
        )
        raise ProviderUnavailable(f"Provider returned {resp.status_code}")


def _parse_token_response(resp: httpx.Response, grant_type: str) -> TokenResponse:
    try:
        data: Any = resp.json()
    except ValueError as e:
        logger.error(
            "Token endpoint returned non-JSON body",
            extra={"grant_type": grant_type, "status_code": resp.status_code},
        )
        raise MalformedProviderResponse("Provider response is not JSON", e) from e

    if not isinstance(data, dict):
        logger.error(
            "Token endpoint returned non-object JSON",
            extra={"grant_type": grant_type, "status_code": resp.status_code},
        )
        raise MalformedProviderResponse("Provider response is not a JSON object")

    try:
        return TokenResponse.model_validate(data)
    except ValidationError as e:
        # Only field locations are logged: error details echo input values
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        logger.error(
            "Token endpoint response missing required fields",
            extra={"grant_type": grant_type, "fields": fields},
        )
        raise MalformedProviderResponse(f"Invalid fields in provider response: {fields}") from None


def _provider_error_code(resp: httpx.Response) -> str:
    """Extract the OAuth `error` code (e.g. "invalid_grant") from an error body."""
    try:
        data = resp.json()
    except ValueError:
        return ""
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"][:64]
    return ""
