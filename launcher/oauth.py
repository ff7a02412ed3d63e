"""Anthropic OAuth (authorization code + PKCE).

Builds the authorization URL, parses the code the user pastes back,
exchanges it for tokens and refreshes expired tokens. Only the protocol is
implemented here; the authorization server is external.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from launcher.errors import OAuthError
from launcher.models import PKCEPair

logger = logging.getLogger(__name__)

CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
AUTHORIZE_URL = "https://claude.ai/oauth/authorize"
TOKEN_URL = "https://console.anthropic.com/v1/oauth/token"
# Web redirect: the user copies the code from the callback page
REDIRECT_URI = "https://console.anthropic.com/oauth/code/callback"
SCOPES = "org:create_api_key user:profile user:inference"

# Stored expiry is pulled forward by this margin
EXPIRY_MARGIN_MS = 5 * 60 * 1000
REQUEST_TIMEOUT = 30.0


@dataclass
class OAuthCredentials:
    """Tokens returned by the authorization server.

    Attributes:
        type: Always "oauth"
        refresh: Refresh token
        access: Access token
        expires: Expiry as epoch milliseconds (already minus the safety margin)
    """

    type: str
    refresh: str
    access: str
    expires: int

    def is_expired(self, now_ms: int | None = None) -> bool:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms >= self.expires

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "refresh": self.refresh,
            "access": self.access,
            "expires": self.expires,
        }


def build_authorize_url(pkce: PKCEPair) -> str:
    """Build the authorization request URL.

    ``state`` carries the verifier so the code exchange can bind the two
    without separate storage.
    """
    params = {
        "code": "true",
        "client_id": CLIENT_ID,
        "response_type": "code",
        "redirect_uri": REDIRECT_URI,
        "scope": SCOPES,
        "code_challenge": pkce.challenge,
        "code_challenge_method": "S256",
        "state": pkce.verifier,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def parse_authorization_code(user_input: str) -> str:
    """Extract the authorization code from what the user pasted.

    Accepts the bare code, the ``code#state`` form shown on the callback
    page, or the full callback URL.
    """
    code = user_input.strip()
    if "://" in code:
        query = parse_qs(urlparse(code).query)
        if query.get("code"):
            code = query["code"][0]
    if "#" in code:
        code = code.split("#", 1)[0]
    return code


def _expires_at_ms(expires_in: float) -> int:
    return int(time.time() * 1000) + int(expires_in * 1000) - EXPIRY_MARGIN_MS


async def _post_token_request(
    payload: dict[str, str],
    transport: httpx.AsyncBaseTransport | None,
) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT, transport=transport
        ) as client:
            response = await client.post(TOKEN_URL, json=payload)
    except httpx.HTTPError as e:
        raise OAuthError(f"Could not reach the token endpoint: {e}") from e

    if not 200 <= response.status_code < 300:
        logger.warning(
            f"Token request failed (HTTP {response.status_code}): {response.text[:200]}"
        )
        raise OAuthError(f"HTTP {response.status_code}: {response.text}")

    try:
        data = response.json()
    except ValueError as e:
        raise OAuthError("Unexpected token response") from e
    if not isinstance(data, dict):
        raise OAuthError("Unexpected token response")
    return data


async def exchange_code(
    code: str,
    verifier: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> OAuthCredentials:
    """Exchange an authorization code for tokens.

    Args:
        code: Authorization code from the callback
        verifier: PKCE verifier of the same authorization attempt
        transport: Optional httpx transport (tests)

    Returns:
        OAuthCredentials

    Raises:
        OAuthError: On transport errors, non-2xx responses or malformed bodies
    """
    logger.info(f"Exchanging authorization code {code[:8]}...")
    data = await _post_token_request(
        {
            "grant_type": "authorization_code",
            "client_id": CLIENT_ID,
            "code": code,
            "state": verifier,
            "redirect_uri": REDIRECT_URI,
            "code_verifier": verifier,
        },
        transport,
    )

    access = data.get("access_token")
    refresh = data.get("refresh_token")
    expires_in = data.get("expires_in")
    if not isinstance(access, str) or not isinstance(refresh, str):
        raise OAuthError("Unexpected token response")
    if not isinstance(expires_in, (int, float)):
        raise OAuthError("Unexpected token response")

    return OAuthCredentials(
        type="oauth",
        refresh=refresh,
        access=access,
        expires=_expires_at_ms(expires_in),
    )


async def refresh_access_token(
    refresh_token: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> OAuthCredentials:
    """Refresh an expired access token.

    The server may rotate the refresh token; when it doesn't, the old one
    is kept.
    """
    data = await _post_token_request(
        {
            "grant_type": "refresh_token",
            "client_id": CLIENT_ID,
            "refresh_token": refresh_token,
        },
        transport,
    )

    access = data.get("access_token")
    expires_in = data.get("expires_in")
    if not isinstance(access, str) or not isinstance(expires_in, (int, float)):
        raise OAuthError("Unexpected refresh response")

    new_refresh = data.get("refresh_token")
    return OAuthCredentials(
        type="oauth",
        refresh=new_refresh if isinstance(new_refresh, str) else refresh_token,
        access=access,
        expires=_expires_at_ms(expires_in),
    )


def save_credentials(path: Path, creds: OAuthCredentials) -> None:
    """Write credentials as ``{"anthropic": {...}}`` readable only by the owner."""
    path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    os.chmod(path.parent, 0o700)
    tmp = path.with_suffix(".tmp")
    with open(tmp, "w") as f:
        json.dump({"anthropic": creds.to_dict()}, f, indent=2, sort_keys=True)
    os.chmod(tmp, 0o600)
    tmp.replace(path)


def load_credentials(path: Path) -> OAuthCredentials | None:
    """Load stored credentials, or None if missing or unreadable."""
    if not path.exists():
        return None

    try:
        with open(path) as f:
            data = json.load(f)
        entry = data["anthropic"]
        return OAuthCredentials(
            type=str(entry.get("type", "oauth")),
            refresh=str(entry["refresh"]),
            access=str(entry["access"]),
            expires=int(entry["expires"]),
        )
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning(f"Ignoring unreadable OAuth credentials at {path}: {e}")
        return None
