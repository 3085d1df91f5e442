"""Error kinds surfaced by the proxy.

Every failure a caller can observe is a ProxyError subclass. Each class fixes
the HTTP status, whether retrying the whole request can help, and the public
description sent to the caller. The exception message itself is for logs only
and must never contain the client secret, the authorization code or tokens.
"""


class ProxyError(Exception):
    """Base exception for proxy errors."""

    kind = "internal_error"
    status_code = 500
    retryable = False
    description = "Internal server error"

    def __init__(self, message: str = "", cause: Exception | None = None) -> None:
        super().__init__(message or self.description)
        self.cause = cause

    def to_dict(self, request_id: str) -> dict:
        """Public error body. Contains nothing from the exception message."""
        return {
            "error": self.kind,
            "error_description": self.description,
            "retryable": self.retryable,
            "request_id": request_id,
        }


class InvalidRequest(ProxyError):
    """Inbound request is missing required fields or is malformed."""

    kind = "invalid_request"
    status_code = 400
    description = "The request is missing a required parameter or is malformed"


class SecretUnavailable(ProxyError):
    """The client secret does not exist in the secret store."""

    kind = "secret_unavailable"
    status_code = 500
    description = "OAuth client secret is not configured"


class AccessDenied(ProxyError):
    """The proxy's identity may not read the client secret."""

    kind = "access_denied"
    status_code = 500
    description = "OAuth client secret is not accessible"


class TransientStoreError(ProxyError):
    """Secret store timed out or could not be reached."""

    kind = "transient_store_error"
    status_code = 503
    retryable = True
    description = "Secret store is temporarily unavailable"


class InvalidGrant(ProxyError):
    """Provider rejected the grant (code reused, expired or mismatched)."""

    kind = "invalid_grant"
    status_code = 400
    description = "Authorization grant is invalid, expired or already used"

    def __init__(
        self,
        message: str = "",
        provider_error: str = "",
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.provider_error = provider_error


class MalformedProviderResponse(ProxyError):
    """Provider answered 2xx with a body we cannot use."""

    kind = "malformed_provider_response"
    status_code = 502
    description = "Identity provider returned an unexpected response"


class ProviderUnavailable(ProxyError):
    """Provider failed with 5xx, timed out or could not be reached."""

    kind = "provider_unavailable"
    status_code = 503
    retryable = True
    description = "Identity provider is temporarily unavailable"
