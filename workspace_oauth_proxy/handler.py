"""Token exchange orchestration.

For each request:
1. Validate the request (no outbound calls for invalid input)
2. Pick the redirect URI: request override, else the configured default
3. Read the client secret from Secret Manager
4. Exchange the grant with the identity provider
5. Return the provider's tokens; the secret never leaves this module except
   inside the outbound form body

The handler holds no per-request state. Every dependency is injected and
read-only, so one instance serves any number of concurrent requests.
"""

from loguru import logger
from pydantic import SecretStr

from workspace_oauth_proxy.config import OAuthConfig
from workspace_oauth_proxy.errors import InvalidRequest, SecretUnavailable
from workspace_oauth_proxy.models import ExchangeRequest, RefreshRequest, TokenResponse
from workspace_oauth_proxy.secret_accessor import SecretAccessor, SecretReference
from workspace_oauth_proxy.token_client import TokenExchangeClient


class ExchangeHandler:
    """Exchanges authorization codes and refresh tokens on behalf of local clients."""

    def __init__(
        self,
        config: OAuthConfig,
        secret_ref: SecretReference,
        secret_accessor: SecretAccessor,
        token_client: TokenExchangeClient,
    ) -> None:
        self._config = config
        self._secret_ref = secret_ref
        self._secrets = secret_accessor
        self._token_client = token_client

    @property
    def config(self) -> OAuthConfig:
        return self._config

    async def exchange(self, request: ExchangeRequest) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises:
            InvalidRequest: Missing code or unusable redirect URI
            SecretUnavailable, AccessDenied, TransientStoreError: Secret read failed
            InvalidGrant, MalformedProviderResponse, ProviderUnavailable: Exchange failed
        """
        code = (request.code or "").strip()
        if not code:
            raise InvalidRequest("Missing authorization code")

        redirect_uri = self._redirect_uri(request.redirect_uri)
        client_secret = await self._client_secret()

        tokens = await self._token_client.exchange(
            code=code,
            code_verifier=request.code_verifier or None,
            client_id=self._config.client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
        )

        logger.info(
            "Authorization code exchanged",
            extra={
                "redirect_uri": redirect_uri,
                "pkce": bool(request.code_verifier),
                "has_refresh_token": tokens.refresh_token is not None,
                "expires_in": tokens.expires_in,
            },
        )
        return tokens

    async def refresh(self, request: RefreshRequest) -> TokenResponse:
        """Exchange a refresh token for a fresh access token."""
        refresh_token = (request.refresh_token or "").strip()
        if not refresh_token:
            raise InvalidRequest("Missing refresh token")

        client_secret = await self._client_secret()

        tokens = await self._token_client.refresh(
            refresh_token=refresh_token,
            client_id=self._config.client_id,
            client_secret=client_secret,
        )

        logger.info("Access token refreshed", extra={"expires_in": tokens.expires_in})
        return tokens

    def _redirect_uri(self, override: str | None) -> str:
        override = (override or "").strip()
        if not override:
            return self._config.redirect_uri
        if not override.startswith(("https://", "http://")):
            raise InvalidRequest("redirect_uri must be an absolute http(s) URL")
        return override

    async def _client_secret(self) -> SecretStr:
        payload = await self._secrets.fetch(self._secret_ref)
        try:
            value = payload.decode("utf-8").strip()
        except UnicodeDecodeError:
            raise SecretUnavailable("Client secret is not valid UTF-8") from None
        if not value:
            raise SecretUnavailable("Client secret is empty")
        return SecretStr(value)
