"""Unit tests for password hashing and the password policy."""

import pytest

from jwtauth.service.passwords import (
    SALT_BYTES,
    PasswordHasher,
    PasswordPolicy,
)


@pytest.fixture
def hasher():
    return PasswordHasher()


@pytest.fixture
def policy():
    return PasswordPolicy()


class TestPasswordHashing:
    """Tests for HMAC-SHA512 hashing with per-user salts."""

    def test_verify_accepts_original_password(self, hasher):
        """A hash verifies against the password it was made from."""
        digest, salt = hasher.hash("abcdef1!")

        assert hasher.verify("abcdef1!", digest, salt)

    def test_verify_rejects_other_password(self, hasher):
        """A hash of one password does not verify another."""
        digest, salt = hasher.hash("abcdef1!")

        assert not hasher.verify("abcdef2!", digest, salt)

    def test_same_password_gets_new_salt_and_digest(self, hasher):
        """Hashing twice never reuses a salt, so digests differ too."""
        digest1, salt1 = hasher.hash("abcdef1!")
        digest2, salt2 = hasher.hash("abcdef1!")

        assert salt1 != salt2
        assert digest1 != digest2

    def test_salt_and_digest_sizes(self, hasher):
        """Salts are 128 random bytes and digests are SHA-512 sized."""
        digest, salt = hasher.hash("abcdef1!")

        assert len(salt) == SALT_BYTES
        assert len(digest) == 64

    def test_verify_rejects_wrong_salt(self, hasher):
        """The digest is bound to its salt."""
        digest, _ = hasher.hash("abcdef1!")
        _, other_salt = hasher.hash("abcdef1!")

        assert not hasher.verify("abcdef1!", digest, other_salt)

    def test_verify_accepts_memoryview_columns(self, hasher):
        """Digests read back from bytea columns may not be plain bytes."""
        digest, salt = hasher.hash("abcdef1!")

        assert hasher.verify("abcdef1!", memoryview(digest), memoryview(salt))


class TestPasswordPolicy:
    """Tests for the password strength rules."""

    def test_accepts_compliant_password(self, policy):
        check = policy.validate("abcdef1!")

        assert check.ok
        assert check.violations == ()

    def test_rejects_short_password(self, policy):
        """Seven characters is one short even with a digit and special."""
        check = policy.validate("short1!")

        assert not check.ok
        assert check.violations == ("min_length",)

    def test_rejects_missing_digit_and_special(self, policy):
        check = policy.validate("longenough")

        assert not check.ok
        assert "digit" in check.violations
        assert "special_character" in check.violations
        assert "min_length" not in check.violations

    def test_rejects_characters_outside_allowed_set(self, policy):
        """Spaces and punctuation outside !@#$%^&* are not allowed."""
        check = policy.validate("abc def1!")

        assert check.violations == ("allowed_characters",)

    def test_rejects_non_ascii_letters(self, policy):
        check = policy.validate("pässword1!")

        assert "allowed_characters" in check.violations

    @pytest.mark.parametrize("special", list("!@#$%^&*"))
    def test_each_special_character_counts(self, policy, special):
        assert policy.validate(f"abcdefg1{special}").ok

    def test_empty_password_reports_every_requirement(self, policy):
        check = policy.validate("")

        assert check.violations == ("min_length", "digit", "special_character")
