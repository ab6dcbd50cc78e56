"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
session manager do the work; these classes only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass

PASSWORD_RESET = "password_reset"


@dataclass
class User:
    """A registered identity.

    public_id is the opaque external identifier (UUID4 string). It is what
    tokens carry as their subject and what every caller outside the store
    uses. id is the internal row key and never leaves the persistence layer.

    refresh_token holds the single currently valid refresh token, or None when
    the user has no live session. Overwriting it revokes the previous session.
    """

    email: str
    first_name: str
    last_name: str
    hashed_password: str
    public_id: str = ""
    id: int | None = None
    refresh_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None  # soft delete; stores hide these rows

    def to_public(self) -> PublicUser:
        return PublicUser(
            id=self.public_id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            created_at=self.created_at or "",
            updated_at=self.updated_at or "",
        )


@dataclass(frozen=True)
class PublicUser:
    """The user view handed back to callers. No credential material."""

    id: str
    email: str
    first_name: str
    last_name: str
    created_at: str
    updated_at: str


@dataclass
class OneTimeCode:
    """A short-lived numeric credential for an unauthenticated action.

    code_hash is HMAC-SHA256(SECRET_KEY, email:code). The six digits are only
    ever held in memory long enough to hand them to the notification sink.
    Timestamps are fixed-width UTC ISO strings so the store can compare them
    lexically.
    """

    email: str
    code_hash: str
    expires_at: str
    purpose: str = PASSWORD_RESET
    id: int | None = None
    consumed: bool = False
    failed_attempts: int = 0
    created_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password


@dataclass(frozen=True)
class AuthSession:
    """Result of register / login: who is signed in and with which tokens."""

    user: PublicUser
    tokens: TokenPair
