"""PKCE (Proof Key for Code Exchange) primitives per RFC 7636.

The verifier stays on this machine and is only sent with the token
request; the authorization URL carries its S256 challenge.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 64

# Unreserved URI characters
VERIFIER_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PkcePair:
    """Code verifier and its derived challenge."""

    verifier: str
    challenge: str
    method: str = CHALLENGE_METHOD


def generate_code_verifier(length: int = DEFAULT_VERIFIER_LENGTH) -> str:
    """Generate a cryptographically random code verifier.

    Args:
        length: Number of characters, 43 to 128

    Raises:
        ValueError: If length is outside the allowed range
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH}, got {length}"
        )
    return "".join(secrets.choice(VERIFIER_CHARS) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_pair(length: int = DEFAULT_VERIFIER_LENGTH) -> PkcePair:
    verifier = generate_code_verifier(length)
    return PkcePair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state() -> str:
    """Random correlation value tying a redirect to the session that started it."""
    return secrets.token_urlsafe(24)
