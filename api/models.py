"""
API request and response models for the sessionkeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every JSON body the API returns (health excepted) is an ApiResponse envelope:
success, message, data, error, timestamp.

Field limits here are transport guards only (sizes, shapes). Password policy
is a domain rule and lives in auth/policy.py.
"""

from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AuthSession, PublicUser, TokenPair

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is proven by the one-time-code email, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
OTP_PATTERN = r"^\d{6}$"

T = TypeVar("T")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Structured error body. code is a stable machine-readable tag."""

    code: str
    message: str
    detail: Optional[Any] = None


class ApiResponse(BaseModel, Generic[T]):
    success: bool
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None
    timestamp: str = Field(default_factory=_now_iso)

    @classmethod
    def ok(cls, data: Any = None, message: str = "Success") -> "ApiResponse":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, code: str, message: str, detail: Any = None) -> "ApiResponse":
        return cls(success=False, message=message, error=ErrorDetail(code=code, message=message, detail=detail))


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class _EmailBody(BaseModel):
    """Base for every request keyed by email.

    The email is stripped before the pattern check so " a@example.com" means
    the same account on every endpoint. Passwords are never stripped:
    whitespace is a legal password character.
    """

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value: Any) -> Any:
        return _strip(value)


class RegisterRequest(_EmailBody):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=128, json_schema_extra={"format": "password"})

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, value: Any) -> Any:
        return _strip(value)


class LoginRequest(_EmailBody):
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class ForgotPasswordRequest(_EmailBody):
    pass


class ResetPasswordRequest(_EmailBody):
    otp_code: str = Field(pattern=OTP_PATTERN, description="Six-digit code from the reset email.")
    new_password: str = Field(min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Response data models
# ---------------------------------------------------------------------------


class UserView(BaseModel):
    """Public user view. Never carries a password hash or refresh token."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    first_name: str
    last_name: str
    created_at: str
    updated_at: str

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserView":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokenData(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenData":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class AuthData(TokenData):
    user: UserView

    @classmethod
    def from_session(cls, session: AuthSession) -> "AuthData":
        return cls(
            user=UserView.from_public(session.user),
            access_token=session.tokens.access_token,
            refresh_token=session.tokens.refresh_token,
            token_type=session.tokens.token_type,
            expires_in=session.tokens.expires_in,
        )


class HealthResponse(BaseModel):
    """Liveness payload for GET /api/v1/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
