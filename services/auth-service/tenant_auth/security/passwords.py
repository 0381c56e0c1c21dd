"""Password hashing, strength policy and temporary password generation."""

from __future__ import annotations

import logging
import re
import secrets
import string

import bcrypt

from ..domain.results import StrengthReport

logger = logging.getLogger(__name__)

MIN_LENGTH = 8
# bcrypt only consumes the first 72 bytes of its input
MAX_BYTES = 72

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
# characters emitted by the generator, all accepted by the policy below
GENERATOR_SPECIALS = "!@#$%^&*"
POLICY_SPECIALS = '!@#$%^&*(),.?":{}|<>'

_POLICY: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
    (re.compile("[" + re.escape(POLICY_SPECIALS) + "]"), "Password must contain at least one special character"),
)


class CredentialManager:
    """bcrypt-backed credential operations with a configurable work factor."""

    def __init__(self, rounds: int = 12) -> None:
        """Store the bcrypt cost and precompute the hash used for dummy checks."""
        self._rounds = rounds
        self._random = secrets.SystemRandom()
        self._dummy_hash = self.hash(secrets.token_urlsafe(16))

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, password: str) -> str:
        """Return a salted bcrypt hash for ``password``.

        Raises
        ------
        ValueError
            If the password exceeds the 72 byte bcrypt input limit.
        """
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_BYTES:
            raise ValueError("password exceeds 72 bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self._rounds)).decode("ascii")

    def verify(self, password: str, hashed: str) -> bool:
        """Check ``password`` against ``hashed``; malformed input yields ``False``."""
        try:
            encoded = password.encode("utf-8")
            if len(encoded) > MAX_BYTES:
                return False
            return bcrypt.checkpw(encoded, hashed.encode("ascii"))
        except (ValueError, TypeError, UnicodeError, AttributeError):
            logger.debug("password verification against malformed hash")
            return False

    def dummy_verify(self, password: str) -> None:
        """Spend one verification so unknown accounts cost the same as known ones."""
        self.verify(password, self._dummy_hash)

    def validate_strength(self, password: str) -> StrengthReport:
        """Evaluate every policy rule and report all violations at once."""
        violations: list[str] = []
        if len(password) < MIN_LENGTH:
            violations.append(f"Password must be at least {MIN_LENGTH} characters long")
        if len(password.encode("utf-8")) > MAX_BYTES:
            violations.append(f"Password must be at most {MAX_BYTES} bytes long")
        for pattern, message in _POLICY:
            if not pattern.search(password):
                violations.append(message)
        return StrengthReport(valid=not violations, violations=tuple(violations))

    def generate_temporary(self, length: int = 12) -> str:
        """Generate a random password that satisfies the strength policy by construction."""
        if length < MIN_LENGTH:
            raise ValueError(f"temporary passwords must be at least {MIN_LENGTH} characters")
        alphabet = LOWERCASE + UPPERCASE + DIGITS + GENERATOR_SPECIALS
        chars = [
            self._random.choice(UPPERCASE),
            self._random.choice(LOWERCASE),
            self._random.choice(DIGITS),
            self._random.choice(GENERATOR_SPECIALS),
        ]
        chars.extend(self._random.choice(alphabet) for _ in range(length - len(chars)))
        self._random.shuffle(chars)
        return "".join(chars)
