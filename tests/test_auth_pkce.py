"""Tests for PKCE primitives."""

import base64
import hashlib

import pytest

from chesslink.auth.pkce import (
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    VERIFIER_CHARS,
    PkcePair,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce_pair,
    generate_state,
)


class TestCodeVerifier:
    """Tests for generate_code_verifier."""

    def test_default_length_and_charset(self) -> None:
        verifier = generate_code_verifier()
        assert len(verifier) == 64
        assert set(verifier) <= set(VERIFIER_CHARS)

    def test_bounds(self) -> None:
        assert len(generate_code_verifier(MIN_VERIFIER_LENGTH)) == 43
        assert len(generate_code_verifier(MAX_VERIFIER_LENGTH)) == 128

    @pytest.mark.parametrize("length", [42, 129, 0])
    def test_invalid_length(self, length: int) -> None:
        with pytest.raises(ValueError, match="must be between"):
            generate_code_verifier(length)

    def test_unique(self) -> None:
        assert len({generate_code_verifier() for _ in range(50)}) == 50


class TestCodeChallenge:
    """Tests for generate_code_challenge."""

    def test_rfc7636_example(self) -> None:
        # Appendix B of RFC 7636
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_matches_sha256(self) -> None:
        verifier = generate_code_verifier()
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
        assert generate_code_challenge(verifier) == expected
        assert "=" not in expected


class TestPkcePair:
    """Tests for generate_pkce_pair and generate_state."""

    def test_pair_is_consistent(self) -> None:
        pair = generate_pkce_pair()
        assert isinstance(pair, PkcePair)
        assert pair.method == "S256"
        assert pair.challenge == generate_code_challenge(pair.verifier)

    def test_state_is_random(self) -> None:
        first, second = generate_state(), generate_state()
        assert first != second
        assert len(first) >= 32
