"""PKCE (RFC 7636) verifier/challenge and CSRF state generation."""

import base64
import hashlib
import secrets


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """32 random bytes, base64url without padding.

    >>> v = generate_code_verifier()
    >>> len(v)
    43
    >>> '=' in v
    False
    """
    return _b64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding.

    >>> generate_code_challenge("dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk")
    'E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM'
    """
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    """16 random bytes, hex-encoded. Used as the CSRF nonce on the callback.

    >>> len(generate_state())
    32
    """
    return secrets.token_hex(16)


def generate_pkce() -> tuple[str, str]:
    """Generate a (verifier, challenge) pair.

    >>> v, c = generate_pkce()
    >>> c == generate_code_challenge(v)
    True
    """
    verifier = generate_code_verifier()
    return verifier, generate_code_challenge(verifier)
