"""
auth/policy.py -- Password policy predicates.

Pure functions: no I/O, no settings lookup, no hashing. The session manager
calls them before touching a store, and tests exercise them directly.

Two policies exist on purpose:

  strong_password_violations() -- register and change-password. At least
      12 characters with an uppercase letter, a lowercase letter, a digit and
      a symbol.

  reset_password_violations() -- reset-password. Length floor only (6 by
      default). This is weaker than the strong policy; the discrepancy is
      tracked in DESIGN.md and is not unified here.

Both reject passwords over MAX_BYTES once UTF-8 encoded: bcrypt refuses
longer input, so such a password could never be stored.
"""

from __future__ import annotations

STRONG_MIN_LENGTH = 12
RESET_MIN_LENGTH = 6
MAX_LENGTH = 128
MAX_BYTES = 72

SYMBOLS = frozenset("!@#$%^&*()-_=+[]{};:'\",.<>/?\\|`~")


def _size_violations(password: str, min_length: int) -> list[str]:
    violations: list[str] = []
    if len(password) < min_length:
        violations.append(f"Password must be at least {min_length} characters long.")
    if len(password) > MAX_LENGTH:
        violations.append(f"Password must be at most {MAX_LENGTH} characters long.")
    if len(password.encode("utf-8")) > MAX_BYTES:
        violations.append(f"Password must be at most {MAX_BYTES} bytes when UTF-8 encoded.")
    return violations


def strong_password_violations(password: str, min_length: int = STRONG_MIN_LENGTH) -> list[str]:
    """Return human-readable policy violations; an empty list means compliant."""
    violations = _size_violations(password, min_length)
    if not any(c.isupper() for c in password):
        violations.append("Password must contain an uppercase letter.")
    if not any(c.islower() for c in password):
        violations.append("Password must contain a lowercase letter.")
    if not any(c.isdigit() for c in password):
        violations.append("Password must contain a digit.")
    if not any(c in SYMBOLS for c in password):
        violations.append("Password must contain a symbol.")
    return violations


def reset_password_violations(password: str, min_length: int = RESET_MIN_LENGTH) -> list[str]:
    return _size_violations(password, min_length)
