"""Unit tests for auth/passwords.py -- bcrypt hashing and the strength policy.

Covers:
- Same plaintext hashes differently every time, yet both hashes verify
- Wrong password and malformed stored hash both fail verification
- Passwords beyond bcrypt's 72-byte limit hash and verify consistently
- Primitive failure surfaces as HashingFailure, never as a value
- assess_strength() reports each policy violation
"""

from __future__ import annotations

import bcrypt
import pytest

from auth.errors import HashingFailure
from auth.passwords import PasswordHasher, assess_strength


class TestHashAndVerify:
    def test_hash_is_salted_and_verifiable(self, hasher: PasswordHasher) -> None:
        first = hasher.hash("secret")
        second = hasher.hash("secret")
        assert first != second
        assert hasher.verify("secret", first)
        assert hasher.verify("secret", second)

    def test_wrong_password_does_not_verify(self, hasher: PasswordHasher) -> None:
        stored = hasher.hash("secret")
        assert not hasher.verify("wrong", stored)

    def test_hash_is_not_plaintext(self, hasher: PasswordHasher) -> None:
        stored = hasher.hash("Secret123")
        assert "Secret123" not in stored
        assert stored.startswith("$2")

    def test_configured_cost_is_embedded(self) -> None:
        stored = PasswordHasher(rounds=5).hash("Secret123")
        assert stored.split("$")[2] == "05"

    def test_malformed_hash_returns_false(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("secret", "not-a-bcrypt-hash") is False
        assert hasher.verify("secret", "") is False

    def test_long_password_round_trips(self, hasher: PasswordHasher) -> None:
        long_password = "Aa1" + "x" * 200
        stored = hasher.hash(long_password)
        assert hasher.verify(long_password, stored)

    def test_multibyte_password_round_trips(self, hasher: PasswordHasher) -> None:
        stored = hasher.hash("Pässwörd1ü")
        assert hasher.verify("Pässwörd1ü", stored)
        assert not hasher.verify("Passwort1u", stored)

    @pytest.mark.parametrize("rounds", [3, 32])
    def test_rounds_out_of_range_rejected(self, rounds: int) -> None:
        with pytest.raises(ValueError):
            PasswordHasher(rounds=rounds)

    def test_dummy_hash_is_computed_once(self, hasher: PasswordHasher) -> None:
        assert hasher.dummy_hash is hasher.dummy_hash
        assert not hasher.verify("anything", hasher.dummy_hash)


class TestHashingFailure:
    def test_primitive_error_raises_hashing_failure(self, hasher: PasswordHasher, monkeypatch) -> None:
        def broken_hashpw(password: bytes, salt: bytes) -> bytes:
            raise OSError("entropy source unavailable")

        monkeypatch.setattr(bcrypt, "hashpw", broken_hashpw)
        with pytest.raises(HashingFailure):
            hasher.hash("Secret123")

    def test_salt_failure_raises_hashing_failure(self, hasher: PasswordHasher, monkeypatch) -> None:
        def broken_gensalt(rounds: int = 12, prefix: bytes = b"2b") -> bytes:
            raise RuntimeError("no randomness")

        monkeypatch.setattr(bcrypt, "gensalt", broken_gensalt)
        with pytest.raises(HashingFailure):
            hasher.hash("Secret123")


class TestAssessStrength:
    def test_valid_password(self) -> None:
        report = assess_strength("Secret123")
        assert report.valid
        assert report.violations == []

    @pytest.mark.parametrize(
        "password, fragment",
        [
            ("Sec12", "at least 8 characters"),
            ("secret123", "uppercase"),
            ("SECRET123", "lowercase"),
            ("SecretSecret", "number"),
        ],
    )
    def test_single_violation(self, password: str, fragment: str) -> None:
        report = assess_strength(password)
        assert not report.valid
        assert len(report.violations) == 1
        assert fragment in report.violations[0]

    def test_empty_password_reports_everything(self) -> None:
        report = assess_strength("")
        assert not report.valid
        assert len(report.violations) == 4

    def test_available_on_hasher(self, hasher: PasswordHasher) -> None:
        assert hasher.assess_strength("Secret123").valid
