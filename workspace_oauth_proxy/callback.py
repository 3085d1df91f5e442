"""Browser callback support.

When the proxy's own URL is the registered redirect URI, Google sends the
user's browser to GET / with `code` and `state`. The local client encodes
where it is listening into `state`:

    base64url(JSON {"uri": "http://localhost:PORT/path", "csrf": "...", "manual": false})

Only loopback targets are accepted, so the proxy can never be used as an
open redirector.
"""

import base64
import json
import time
from dataclasses import dataclass
from urllib.parse import urlencode, urlsplit, urlunsplit

from workspace_oauth_proxy.errors import InvalidRequest
from workspace_oauth_proxy.models import TokenResponse

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}

# Upper bound on the encoded state we are willing to decode
MAX_STATE_LENGTH = 4096


@dataclass(frozen=True)
class CallbackState:
    """Where and how to hand the tokens back to the local client."""

    uri: str
    csrf: str = ""
    manual: bool = False


def is_loopback_uri(uri: str) -> bool:
    """Check that uri is a plain http URL on the local machine."""
    try:
        parts = urlsplit(uri)
        parts.port  # noqa: B018 - raises ValueError on a malformed port
    except ValueError:
        return False
    if parts.scheme != "http" or "@" in parts.netloc:
        return False
    return parts.hostname in LOOPBACK_HOSTS


def decode_state(state: str) -> CallbackState:
    """Decode and validate the OAuth state parameter.

    Raises:
        InvalidRequest: If state is not valid base64url JSON or its target
            is not a loopback URL
    """
    if not state or len(state) > MAX_STATE_LENGTH:
        raise InvalidRequest("Missing or oversized state")

    padded = state + "=" * (-len(state) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except ValueError:
        raise InvalidRequest("State is not valid base64url JSON") from None

    if not isinstance(data, dict):
        raise InvalidRequest("State is not a JSON object")

    uri = data.get("uri")
    if not isinstance(uri, str) or not is_loopback_uri(uri):
        raise InvalidRequest("State redirect target is not a loopback URL")

    csrf = data.get("csrf", "")
    return CallbackState(
        uri=uri,
        csrf=csrf if isinstance(csrf, str) else "",
        manual=data.get("manual") is True,
    )


def encode_state(state: CallbackState) -> str:
    """Inverse of decode_state, used by local clients and tests."""
    payload = {"uri": state.uri, "csrf": state.csrf, "manual": state.manual}
    raw = json.dumps(payload, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def credentials_payload(tokens: TokenResponse, now: float | None = None) -> dict:
    """Token fields as handed to the local client, plus absolute expiry in ms."""
    now = time.time() if now is None else now
    payload = tokens.to_dict()
    payload["expiry_date"] = int((now + tokens.expires_in) * 1000)
    return payload


def build_redirect(uri: str, params: dict) -> str:
    """Add query parameters to a loopback URI, ahead of any fragment."""
    parts = urlsplit(uri)
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit(parts._replace(query=query))
