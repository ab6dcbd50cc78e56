"""
auth/tokens.py -- JWT codec, password hashing, and one-time-code primitives.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user public id), email, typ (access/refresh), jti, iat and exp.
       They are integrity-protected, not encrypted -- never put a secret in a
       claim. jti is a random nonce so two tokens minted in the same second for
       the same user are still distinct strings; refresh rotation depends on it.

       TokenCodec.verify() returns a TokenVerification value instead of
       raising. Callers branch on .ok and read .reason; a bad token is an
       expected input, not an exceptional one.

  Passwords: bcrypt with a cost factor from Settings.bcrypt_rounds (>= 12 in
       production). The _DUMMY_HASH constant enables timing equalization in
       authenticate() so response time does not reveal whether an email
       is registered [C1].

  One-time codes: secrets.randbelow(10**6), zero-padded to six digits. Only
       HMAC-SHA256(SECRET_KEY, email:code) is persisted; a leaked table cannot
       be replayed without the key, and binding the email stops a code issued
       for one account matching another's row.

  SECRET_KEY: injected into TokenCodec at construction and never mutated.
       The codec holds no other state, so one instance is shared by every
       request without locking.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.protocols import CredentialStore
    from core.config import Settings

logger = logging.getLogger("sessionkeeper.auth")

_ALGORITHM = "HS256"

ONE_TIME_CODE_DIGITS = 6

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects input longer than 72 bytes with ValueError. Callers run
    auth/policy.py first, which turns such a password into InvalidInput.
    """
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash, or a
    candidate over 72 bytes (which no stored password can be), is a mismatch,
    not a crash.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Always call verify_password() even when the
# email does not exist.
_DUMMY_HASH: str = hash_password("sessionkeeper_timing_dummy")


def authenticate(store: CredentialStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization.

    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.find_by_email(email)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# JWT codec
# ---------------------------------------------------------------------------


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    email: str
    kind: TokenKind
    expires_at: datetime
    token_id: str


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of TokenCodec.verify(): claims on success, a reason otherwise.

    reason is one of "expired", "invalid", "missing_claims", "wrong_kind".
    """

    claims: TokenClaims | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


@dataclass(frozen=True)
class TokenCodec:
    """Signs and verifies bearer tokens with one immutable key.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        pair = codec.issue_pair(user.public_id, user.email)
        result = codec.verify(pair.refresh_token, kind=TokenKind.REFRESH)
        if result.ok:
            result.claims.subject
    """

    secret_key: str = field(repr=False)
    access_ttl: timedelta
    refresh_ttl: timedelta

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            secret_key=settings.secret_key,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
        )

    def issue(self, subject_id: str, subject_email: str, kind: TokenKind) -> str:
        """Encode a signed token for the subject; lifetime depends on kind."""
        now = datetime.now(timezone.utc)
        ttl = self.access_ttl if kind is TokenKind.ACCESS else self.refresh_ttl
        payload = {
            "sub": subject_id,
            "email": subject_email,
            "typ": kind.value,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self.secret_key, algorithm=_ALGORITHM)

    def issue_pair(self, subject_id: str, subject_email: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue(subject_id, subject_email, TokenKind.ACCESS),
            refresh_token=self.issue(subject_id, subject_email, TokenKind.REFRESH),
            expires_in=int(self.access_ttl.total_seconds()),
        )

    def hash_code(self, email: str, code: str) -> str:
        """Return the stored fingerprint of a one-time code (see hash_one_time_code)."""
        return hash_one_time_code(self.secret_key, email, code)

    def verify(self, token: str, kind: TokenKind | None = None) -> TokenVerification:
        """Check signature, expiry and shape. Never raises for a bad token.

        Expiry is evaluated against the wall clock now, not at issuance.
        When kind is given, a token of the other kind is rejected.
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError:
            return TokenVerification(reason="expired")
        except JWTError:
            return TokenVerification(reason="invalid")

        try:
            claims = TokenClaims(
                subject=str(payload["sub"]),
                email=str(payload["email"]),
                kind=TokenKind(payload["typ"]),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
                token_id=str(payload["jti"]),
            )
        except (KeyError, ValueError, TypeError):
            return TokenVerification(reason="missing_claims")

        if kind is not None and claims.kind is not kind:
            return TokenVerification(reason="wrong_kind")
        return TokenVerification(claims=claims)


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------


def generate_one_time_code() -> str:
    """Return a uniformly random code over 000000-999999, zero-padded."""
    return f"{secrets.randbelow(10**ONE_TIME_CODE_DIGITS):0{ONE_TIME_CODE_DIGITS}d}"


def hash_one_time_code(secret_key: str, email: str, code: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, "email:code") as a hex string.

    Deterministic, so the store can look the code up by hash in one query.
    """
    return hmac.new(
        secret_key.encode(),
        f"{email}:{code}".encode(),
        hashlib.sha256,
    ).hexdigest()
