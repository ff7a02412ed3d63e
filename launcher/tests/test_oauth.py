"""Tests for the OAuth PKCE flow helpers."""

import json
import stat
import time
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from launcher.errors import OAuthError
from launcher.models import PKCEPair
from launcher.oauth import (
    CLIENT_ID,
    EXPIRY_MARGIN_MS,
    REDIRECT_URI,
    TOKEN_URL,
    OAuthCredentials,
    build_authorize_url,
    exchange_code,
    load_credentials,
    parse_authorization_code,
    refresh_access_token,
    save_credentials,
)


def token_endpoint(status_code: int = 200, body: dict | None = None, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=body if body is not None else {})

    return httpx.MockTransport(handler)


class TestAuthorizeUrl:
    """Tests for build_authorize_url."""

    def test_contains_pkce_and_client_params(self):
        pkce = PKCEPair(verifier="verifier123", challenge="challenge456")

        url = build_authorize_url(pkce)
        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}

        assert parsed.netloc == "claude.ai"
        assert params["client_id"] == CLIENT_ID
        assert params["response_type"] == "code"
        assert params["redirect_uri"] == REDIRECT_URI
        assert params["code_challenge"] == "challenge456"
        assert params["code_challenge_method"] == "S256"
        assert params["state"] == "verifier123"
        assert "user:inference" in params["scope"]


class TestParseAuthorizationCode:
    """Tests for parse_authorization_code."""

    def test_bare_code(self):
        assert parse_authorization_code("  abc123 \n") == "abc123"

    def test_code_with_state_fragment(self):
        assert parse_authorization_code("abc123#state456") == "abc123"

    def test_full_callback_url(self):
        url = f"{REDIRECT_URI}?code=abc123&state=xyz"

        assert parse_authorization_code(url) == "abc123"


class TestExchangeCode:
    """Tests for exchange_code."""

    @pytest.mark.asyncio
    async def test_success_returns_credentials(self):
        seen: list[httpx.Request] = []
        transport = token_endpoint(
            body={"access_token": "acc", "refresh_token": "ref", "expires_in": 3600},
            seen=seen,
        )
        before_ms = int(time.time() * 1000)

        creds = await exchange_code("code1", "verifier1", transport)

        assert creds.type == "oauth"
        assert creds.access == "acc"
        assert creds.refresh == "ref"
        # Expiry is stored with the safety margin already subtracted
        assert creds.expires >= before_ms + 3600 * 1000 - EXPIRY_MARGIN_MS
        assert creds.expires <= int(time.time() * 1000) + 3600 * 1000 - EXPIRY_MARGIN_MS

        request = seen[0]
        assert str(request.url) == TOKEN_URL
        payload = json.loads(request.content)
        assert payload["grant_type"] == "authorization_code"
        assert payload["code"] == "code1"
        assert payload["code_verifier"] == "verifier1"
        assert payload["state"] == "verifier1"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        transport = token_endpoint(status_code=400, body={"error": "invalid_grant"})

        with pytest.raises(OAuthError, match="HTTP 400"):
            await exchange_code("bad", "verifier", transport)

    @pytest.mark.asyncio
    async def test_malformed_body_raises(self):
        transport = token_endpoint(body={"access_token": "acc"})

        with pytest.raises(OAuthError):
            await exchange_code("code", "verifier", transport)

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        with pytest.raises(OAuthError, match="Could not reach"):
            await exchange_code("code", "verifier", httpx.MockTransport(handler))


class TestRefresh:
    """Tests for refresh_access_token."""

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_used(self):
        transport = token_endpoint(
            body={"access_token": "new", "refresh_token": "rot", "expires_in": 60}
        )

        creds = await refresh_access_token("old", transport)

        assert creds.access == "new"
        assert creds.refresh == "rot"

    @pytest.mark.asyncio
    async def test_keeps_old_refresh_token_when_not_rotated(self):
        seen: list[httpx.Request] = []
        transport = token_endpoint(
            body={"access_token": "new", "expires_in": 60}, seen=seen
        )

        creds = await refresh_access_token("old", transport)

        assert creds.refresh == "old"
        assert json.loads(seen[0].content)["grant_type"] == "refresh_token"

    @pytest.mark.asyncio
    async def test_failure_raises(self):
        transport = token_endpoint(status_code=401, body={"error": "expired"})

        with pytest.raises(OAuthError):
            await refresh_access_token("old", transport)


class TestCredentialsPersistence:
    """Tests for save_credentials/load_credentials."""

    def test_round_trip_with_private_permissions(self, tmp_path: Path):
        path = tmp_path / "config" / "credentials" / "oauth.json"
        creds = OAuthCredentials(type="oauth", refresh="r", access="a", expires=123)

        save_credentials(path, creds)

        assert load_credentials(path) == creds
        assert json.loads(path.read_text()) == {
            "anthropic": {"type": "oauth", "refresh": "r", "access": "a", "expires": 123}
        }
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert stat.S_IMODE(path.parent.stat().st_mode) == 0o700

    def test_missing_file_returns_none(self, tmp_path: Path):
        assert load_credentials(tmp_path / "nope.json") is None

    def test_corrupt_file_returns_none(self, tmp_path: Path):
        path = tmp_path / "oauth.json"
        path.write_text("{not json")

        assert load_credentials(path) is None

    def test_is_expired(self):
        creds = OAuthCredentials(type="oauth", refresh="r", access="a", expires=1000)

        assert creds.is_expired(now_ms=1000) is True
        assert creds.is_expired(now_ms=999) is False
