"""Cryptographic token and PKCE generation.

All randomness comes from the operating system CSPRNG via ``secrets``.
There is no fallback to a weaker source.
"""

import base64
import hashlib
import secrets

from launcher.models import PKCEPair

# 32 random bytes -> 64 lowercase hex characters
TOKEN_BYTES = 32
VERIFIER_BYTES = 32


def base64url(data: bytes) -> str:
    """Base64url-encode without padding (RFC 7636 appendix A)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_secure_token() -> str:
    """Generate a gateway token.

    Returns:
        64 lowercase hex characters derived from 32 CSPRNG bytes
    """
    return secrets.token_hex(TOKEN_BYTES)


def pkce_challenge(verifier: str) -> str:
    """Compute the S256 challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64url(digest)


def generate_pkce() -> PKCEPair:
    """Generate a fresh PKCE verifier/challenge pair.

    Returns:
        PKCEPair where challenge == base64url(SHA-256(verifier))
    """
    verifier = base64url(secrets.token_bytes(VERIFIER_BYTES))
    return PKCEPair(verifier=verifier, challenge=pkce_challenge(verifier))
