"""Password hashing and strength rules.

Hashes are HMAC-SHA512 digests of the UTF-8 plaintext keyed with a fresh
128-byte random salt, stored as a ``(digest, salt)`` pair on the user row.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass
from typing import List, Tuple

SALT_BYTES = 128
SPECIAL_CHARACTERS = "!@#$%^&*"
MIN_PASSWORD_LENGTH = 8

_ALLOWED_PATTERN = re.compile(r"^[a-zA-Z0-9!@#$%^&*]*$")
_DIGIT_PATTERN = re.compile(r"[0-9]")
_SPECIAL_PATTERN = re.compile(r"[!@#$%^&*]")


class PasswordHasher:
    def hash(self, plaintext: str) -> Tuple[bytes, bytes]:
        """Return ``(digest, salt)`` for ``plaintext`` using a new salt."""
        salt = secrets.token_bytes(SALT_BYTES)
        return self._digest(plaintext, salt), salt

    def verify(self, plaintext: str, digest: bytes, salt: bytes) -> bool:
        computed = self._digest(plaintext, salt)
        # SECURITY: constant-time comparison to avoid leaking prefix matches
        return hmac.compare_digest(computed, bytes(digest))

    @staticmethod
    def _digest(plaintext: str, salt: bytes) -> bytes:
        return hmac.new(bytes(salt), plaintext.encode("utf-8"), hashlib.sha512).digest()


@dataclass(frozen=True)
class PolicyCheck:
    violations: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.violations


class PasswordPolicy:
    """Minimum 8 characters, one digit, one of ``!@#$%^&*``, nothing outside
    ``[a-zA-Z0-9!@#$%^&*]``."""

    message = (
        "password needs at least 8 characters, one digit and one special "
        f"character ({SPECIAL_CHARACTERS})"
    )

    def validate(self, plaintext: str) -> PolicyCheck:
        violations: List[str] = []
        if len(plaintext) < MIN_PASSWORD_LENGTH:
            violations.append("min_length")
        if not _DIGIT_PATTERN.search(plaintext):
            violations.append("digit")
        if not _SPECIAL_PATTERN.search(plaintext):
            violations.append("special_character")
        if not _ALLOWED_PATTERN.fullmatch(plaintext):
            violations.append("allowed_characters")
        return PolicyCheck(tuple(violations))
