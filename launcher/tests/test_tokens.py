"""Tests for token and PKCE generation."""

import base64
import hashlib
import re

from launcher.tokens import base64url, generate_pkce, generate_secure_token, pkce_challenge


class TestSecureToken:
    """Tests for generate_secure_token."""

    def test_is_64_lowercase_hex(self):
        token = generate_secure_token()

        assert re.fullmatch(r"[0-9a-f]{64}", token)

    def test_tokens_are_unique(self):
        tokens = {generate_secure_token() for _ in range(100)}

        assert len(tokens) == 100


class TestBase64url:
    """Tests for base64url."""

    def test_no_padding_and_url_safe_alphabet(self):
        encoded = base64url(b"\xfb\xff\xfe")

        assert encoded == "-__-"
        assert "=" not in base64url(b"a")

    def test_decodes_back(self):
        data = bytes(range(32))
        encoded = base64url(data)

        padded = encoded + "=" * (-len(encoded) % 4)
        assert base64.urlsafe_b64decode(padded) == data


class TestPKCE:
    """Tests for PKCE pair generation."""

    def test_challenge_is_s256_of_verifier(self):
        pair = generate_pkce()

        expected = base64url(hashlib.sha256(pair.verifier.encode()).digest())
        assert pair.challenge == expected

    def test_verifier_from_32_bytes(self):
        """32 random bytes encode to a 43-character verifier."""
        pair = generate_pkce()

        assert len(pair.verifier) == 43
        assert re.fullmatch(r"[A-Za-z0-9_-]+", pair.verifier)

    def test_rfc7636_example(self):
        """Known vector from RFC 7636 appendix B."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

        assert pkce_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_pairs_are_unique(self):
        assert generate_pkce().verifier != generate_pkce().verifier
