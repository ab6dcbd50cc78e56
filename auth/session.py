"""
auth/session.py -- Session lifecycle: register, login, refresh, logout,
change-password, forgot-password, reset-password.

State per user (derived, not stored as an enum):

    Anonymous --login/register--> Authenticated --logout/change/reset--> Revoked
                                       ^                                    |
                                       +---------------login----------------+

"Authenticated" means users.refresh_token holds a value. Every login and
refresh overwrites it, so only the most recently issued refresh token works.
Clearing it (logout, password change, password reset) revokes every device
at once. Access tokens are short-lived and are not revoked; they age out.

Failures are auth.errors classes. Store outages arrive as StorageUnavailable
and are deliberately not caught here.

Layer rule: no imports from api/. Depends on collaborators only through the
protocols in auth/protocols.py.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import (
    Conflict,
    InvalidCredentials,
    InvalidInput,
    InvalidOrExpiredCode,
    InvalidRefreshToken,
    NotFound,
)
from auth.models import PASSWORD_RESET, AuthSession, OneTimeCode, TokenPair, User
from auth.policy import reset_password_violations, strong_password_violations
from auth.protocols import CodeStore, CredentialStore, NotificationSink
from auth.store import iso_utc
from auth.tokens import (
    TokenCodec,
    TokenKind,
    authenticate,
    generate_one_time_code,
    hash_password,
    verify_password,
)

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("sessionkeeper.session")

FORGOT_PASSWORD_MESSAGE = "If the email exists, a one-time code has been sent."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Orchestrates the credential lifecycle against the stores and the codec.

    One instance per process, built in the API lifespan. It holds no
    per-request state; every method is safe to call from concurrent threads
    as long as the stores are.

    clock is injectable so code expiry can be tested without sleeping.
    """

    def __init__(
        self,
        users: CredentialStore,
        codes: CodeStore,
        codec: TokenCodec,
        sink: NotificationSink,
        *,
        code_ttl: timedelta = timedelta(minutes=15),
        max_code_attempts: int = 5,
        reset_min_length: int = 6,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._users = users
        self._codes = codes
        self._codec = codec
        self._sink = sink
        self._code_ttl = code_ttl
        self._max_code_attempts = max_code_attempts
        self._reset_min_length = reset_min_length
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, users: CredentialStore, codes: CodeStore, sink: NotificationSink
    ) -> SessionManager:
        return cls(
            users,
            codes,
            TokenCodec.from_settings(settings),
            sink,
            code_ttl=timedelta(seconds=settings.one_time_code_ttl_seconds),
            max_code_attempts=settings.one_time_code_max_attempts,
            reset_min_length=settings.reset_password_min_length,
        )

    @property
    def codec(self) -> TokenCodec:
        return self._codec

    # ------------------------------------------------------------------
    # Sign-up / sign-in
    # ------------------------------------------------------------------

    def register(self, email: str, first_name: str, last_name: str, raw_password: str) -> AuthSession:
        """Create a user and start their first session.

        Raises InvalidInput on a weak password and Conflict on a taken email.

        Not transactional: the user row is written before the refresh token.
        If the process dies between the two writes the account exists without
        a session, and the next login repairs it.
        """
        violations = strong_password_violations(raw_password)
        if violations:
            raise InvalidInput("Password does not meet the password policy.", violations)

        if self._users.find_by_email(email) is not None:
            logger.info("Registration rejected: email already registered")
            raise Conflict()

        user = self._users.create(
            User(
                email=email,
                first_name=first_name,
                last_name=last_name,
                hashed_password=hash_password(raw_password),
            )
        )
        tokens = self._start_session(user)
        logger.info("User %s registered", user.public_id)
        return AuthSession(user=user.to_public(), tokens=tokens)

    def login(self, email: str, raw_password: str) -> AuthSession:
        """Authenticate and replace any existing session with a new one."""
        user = authenticate(self._users, email, raw_password)
        if user is None:
            logger.info("Login failed")
            raise InvalidCredentials()
        tokens = self._start_session(user)
        logger.info("User %s logged in", user.public_id)
        return AuthSession(user=user.to_public(), tokens=tokens)

    # ------------------------------------------------------------------
    # Session maintenance
    # ------------------------------------------------------------------

    def refresh(self, old_refresh_token: str) -> TokenPair:
        """Rotate a refresh token.

        The presented token must verify as a refresh token AND equal the
        user's stored one. The swap is conditional on the stored value, so of
        two concurrent refreshes with the same token exactly one wins.
        """
        result = self._codec.verify(old_refresh_token, kind=TokenKind.REFRESH)
        if not result.ok:
            logger.info("Refresh rejected: %s", result.reason)
            raise InvalidRefreshToken()

        user = self._users.find_by_id_and_refresh_token(result.claims.subject, old_refresh_token)
        if user is None:
            logger.info("Refresh rejected: token is not the current session for its subject")
            raise InvalidRefreshToken()

        tokens = self._codec.issue_pair(user.public_id, user.email)
        if not self._users.swap_refresh_token(user.public_id, old_refresh_token, tokens.refresh_token):
            logger.info("Refresh rejected: session for %s rotated concurrently", user.public_id)
            raise InvalidRefreshToken()
        return tokens

    def logout(self, user_id: str) -> None:
        """Clear the stored refresh token. Idempotent; unknown ids are a no-op."""
        self._users.update_fields(user_id, refresh_token=None)
        logger.info("User %s logged out", user_id)

    # ------------------------------------------------------------------
    # Credential changes
    # ------------------------------------------------------------------

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Replace the password of a signed-in user and revoke every session."""
        user = self._users.find_by_id(user_id)
        if user is None or not verify_password(current_password, user.hashed_password):
            logger.info("Password change rejected for %s: current password mismatch", user_id)
            raise InvalidCredentials("Current password is incorrect.")

        violations = strong_password_violations(new_password)
        if violations:
            raise InvalidInput("New password does not meet the password policy.", violations)
        if new_password == current_password:
            raise InvalidInput(
                "New password must differ from the current password.",
                ["New password must differ from the current password."],
            )

        self._users.update_fields(user_id, hashed_password=hash_password(new_password), refresh_token=None)
        logger.info("User %s changed password; sessions revoked", user_id)

    def forgot_password(self, email: str, defer: Callable[..., object] | None = None) -> str:
        """Start a password reset. Returns the same message whether or not the email exists.

        Delivery is fire-and-forget. With defer (for example
        BackgroundTasks.add_task) the sink runs after the response is sent, so
        a slow mail server cannot make a known email answer slower than an
        unknown one. Without defer it runs inline.
        """
        user = self._users.find_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return FORGOT_PASSWORD_MESSAGE

        superseded = self._codes.invalidate_outstanding(email, PASSWORD_RESET)
        code = generate_one_time_code()
        now = self._clock()
        self._codes.create(
            OneTimeCode(
                email=email,
                code_hash=self._codec.hash_code(email, code),
                purpose=PASSWORD_RESET,
                expires_at=iso_utc(now + self._code_ttl),
                created_at=iso_utc(now),
            )
        )
        logger.info("Password reset code issued for %s (superseded %d)", user.public_id, superseded)

        if defer is None:
            self.deliver_code(user.public_id, email, code)
        else:
            defer(self.deliver_code, user.public_id, email, code)
        return FORGOT_PASSWORD_MESSAGE

    def deliver_code(self, user_id: str, email: str, code: str) -> None:
        """Hand a code to the sink. Failures are logged and never raised."""
        try:
            self._sink.send_one_time_code(email, code)
        except Exception:
            logger.warning("Password reset code delivery failed for %s", user_id, exc_info=True)

    def reset_password(self, email: str, code: str, new_password: str) -> None:
        """Finish a password reset with a one-time code and revoke every session."""
        violations = reset_password_violations(new_password, self._reset_min_length)
        if violations:
            raise InvalidInput("New password does not meet the password policy.", violations)

        now = iso_utc(self._clock())
        record = self._codes.find_valid(email, self._codec.hash_code(email, code), PASSWORD_RESET, now)
        if record is None:
            self._codes.register_failed_attempt(email, PASSWORD_RESET, self._max_code_attempts)
            logger.info("Password reset rejected: invalid or expired code")
            raise InvalidOrExpiredCode()

        user = self._users.find_by_email(email)
        if user is None:
            raise NotFound()

        # Consume first so the code is single-use even if the update below fails.
        if not self._codes.mark_consumed(record.id):
            raise InvalidOrExpiredCode()
        self._users.update_fields(user.public_id, hashed_password=hash_password(new_password), refresh_token=None)
        logger.info("User %s reset password; sessions revoked", user.public_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_session(self, user: User) -> TokenPair:
        tokens = self._codec.issue_pair(user.public_id, user.email)
        self._users.update_fields(user.public_id, refresh_token=tokens.refresh_token)
        return tokens
