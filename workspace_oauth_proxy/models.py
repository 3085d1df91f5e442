"""Request and response bodies of the proxy."""

from pydantic import BaseModel, ConfigDict, Field


class ExchangeRequest(BaseModel):
    """Authorization code exchange request from the local client.

    `code` is optional at the schema level so that a missing code is reported
    as invalid_request by the handler rather than as a schema error.
    """

    model_config = ConfigDict(extra="ignore")

    code: str | None = Field(default=None, repr=False)
    code_verifier: str | None = Field(default=None, repr=False)
    redirect_uri: str | None = None


class RefreshRequest(BaseModel):
    """Refresh token grant request from the local client."""

    model_config = ConfigDict(extra="ignore")

    refresh_token: str | None = Field(default=None, repr=False)


class TokenResponse(BaseModel):
    """Tokens issued by the identity provider.

    Optional fields are omitted from the response when the provider did not
    send them (see to_dict).
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str = Field(min_length=1, repr=False)
    expires_in: int
    token_type: str = Field(min_length=1)
    refresh_token: str | None = Field(default=None, repr=False)
    scope: str | None = None
    id_token: str | None = Field(default=None, repr=False)

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)
