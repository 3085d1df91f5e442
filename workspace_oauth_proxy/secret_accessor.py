"""Client secret retrieval from Google Secret Manager.

Key design decisions:
- The secret is read on every exchange, never cached, so a rotated secret is
  picked up without redeploying
- Store failures are mapped onto three error kinds: missing secret
  (SecretUnavailable), missing IAM binding (AccessDenied) and timeouts or
  connectivity problems (TransientStoreError)
- Only transient failures are retried, with tenacity's exponential backoff
- The store is injected via constructor for testability
"""

import asyncio
from dataclasses import dataclass
from typing import Protocol

import google.auth
from google.api_core.exceptions import (
    FailedPrecondition,
    GoogleAPIError,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    Unauthenticated,
)
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError
from google.cloud.secretmanager import SecretManagerServiceAsyncClient
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from workspace_oauth_proxy.errors import (
    AccessDenied,
    SecretUnavailable,
    TransientStoreError,
)

# Default timeout for a single store call (seconds)
DEFAULT_TIMEOUT = 10.0

DEFAULT_RETRY_ATTEMPTS = 3


@dataclass(frozen=True)
class SecretReference:
    """Logical name of a secret plus the version to read."""

    logical_name: str
    version: str = "latest"

    @classmethod
    def parse(cls, value: str, default_version: str = "latest") -> "SecretReference":
        """Parse a secret name that may carry its own version.

        "projects/p/secrets/s/versions/3" -> ("projects/p/secrets/s", "3")
        "my-secret" -> ("my-secret", default_version)
        """
        name, sep, version = value.strip().partition("/versions/")
        if sep and version:
            return cls(logical_name=name, version=version)
        return cls(logical_name=name, version=default_version or "latest")


class SecretStore(Protocol):
    """Protocol for the secret store operations needed by SecretAccessor."""

    async def get(self, name: str, version: str) -> bytes: ...

    async def exists(self, name: str) -> bool: ...

    async def close(self) -> None: ...


class GoogleSecretStore:
    """Secret Manager backed store.

    Accepts bare secret ids and qualifies them with the configured project,
    or with the project of the Application Default Credentials.
    Raises google.api_core exceptions unchanged.
    """

    def __init__(
        self,
        project: str = "",
        client: SecretManagerServiceAsyncClient | None = None,
    ) -> None:
        self._project = project
        self._client = client

    def _get_client(self) -> SecretManagerServiceAsyncClient:
        """Get async Secret Manager client (lazy initialization)."""
        if self._client is None:
            self._client = SecretManagerServiceAsyncClient()
        return self._client

    async def _qualify(self, name: str) -> str:
        if name.startswith("projects/"):
            return name
        if not self._project:
            # google.auth.default() may query the metadata server
            _, project = await asyncio.to_thread(google.auth.default)
            if not project:
                raise ValueError("Cannot determine project for secret name")
            self._project = project
        return f"projects/{self._project}/secrets/{name}"

    async def get(self, name: str, version: str) -> bytes:
        """Return the payload of one secret version."""
        secret_name = await self._qualify(name)
        response = await self._get_client().access_secret_version(
            request={"name": f"{secret_name}/versions/{version}"}
        )
        return response.payload.data

    async def exists(self, name: str) -> bool:
        """Check whether the secret exists (ignores versions)."""
        secret_name = await self._qualify(name)
        try:
            await self._get_client().get_secret(request={"name": secret_name})
        except NotFound:
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.transport.close()


class SecretAccessor:
    """Fetches the current client secret for each token exchange."""

    def __init__(
        self,
        store: SecretStore,
        timeout: float = DEFAULT_TIMEOUT,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_wait: wait_base | None = None,
    ) -> None:
        """Initialize SecretAccessor.

        Args:
            store: Secret store to read from (injectable for testing)
            timeout: Timeout in seconds for each store call
            retry_attempts: Total attempts for transient failures
            retry_wait: tenacity wait strategy between attempts
        """
        self._store = store
        self._timeout = timeout
        self._retry_attempts = retry_attempts
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.2, min=0.2, max=2)

    async def fetch(self, ref: SecretReference) -> bytes:
        """Fetch the secret payload.

        Raises:
            SecretUnavailable: If the secret or version does not exist
            AccessDenied: If the runtime identity may not read the secret
            TransientStoreError: If the store keeps timing out or failing
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientStoreError),
            stop=stop_after_attempt(self._retry_attempts),
            wait=self._retry_wait,
            reraise=True,
        )
        return await retrying(self._fetch_once, ref)

    async def _fetch_once(self, ref: SecretReference) -> bytes:
        try:
            return await asyncio.wait_for(
                self._store.get(ref.logical_name, ref.version), timeout=self._timeout
            )
        except (NotFound, FailedPrecondition, InvalidArgument, ValueError) as e:
            logger.error(
                "Client secret unavailable",
                extra={"secret": ref.logical_name, "version": ref.version, "error": str(e)},
            )
            raise SecretUnavailable(f"Secret {ref.logical_name} unavailable", e) from e
        except (PermissionDenied, Unauthenticated, DefaultCredentialsError) as e:
            logger.error(
                "Access to client secret denied",
                extra={"secret": ref.logical_name, "error_type": type(e).__name__},
            )
            raise AccessDenied(f"Access to secret {ref.logical_name} denied", e) from e
        except TimeoutError as e:
            logger.warning(
                "Secret store timed out",
                extra={"secret": ref.logical_name, "timeout_seconds": self._timeout},
            )
            raise TransientStoreError("Secret store timed out", e) from e
        except (GoogleAPIError, GoogleAuthError) as e:
            logger.warning(
                "Secret store request failed",
                extra={"secret": ref.logical_name, "error_type": type(e).__name__},
            )
            raise TransientStoreError(f"Secret store request failed: {type(e).__name__}", e) from e

    async def check(self, ref: SecretReference) -> bool:
        """Report whether the secret exists. Store failures count as "no"."""
        try:
            return await asyncio.wait_for(
                self._store.exists(ref.logical_name), timeout=self._timeout
            )
        except Exception as e:
            logger.warning(
                "Secret existence check failed",
                extra={"secret": ref.logical_name, "error_type": type(e).__name__},
            )
            return False
