"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create account; returns user + token pair (201)
  POST /api/v1/auth/login            -- password login; returns user + token pair
  POST /api/v1/auth/refresh          -- rotate refresh token; returns new token pair
  POST /api/v1/auth/forgot-password  -- email a one-time code after responding (always generic 200)
  POST /api/v1/auth/reset-password   -- set new password with a one-time code
  POST /api/v1/auth/change-password  -- set new password (requires auth)
  POST /api/v1/auth/logout           -- revoke refresh token (requires auth)
  GET  /api/v1/auth/me               -- current user view (requires auth)

Security:
  [H2] Credential endpoints are rate-limited per IP (limits in api/limiter.py).
  [C1] Login goes through SessionManager.login() -> authenticate(), which
       equalizes timing between unknown email and wrong password.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers are plain `def`: bcrypt is CPU-bound on purpose, and FastAPI runs sync
handlers in its threadpool instead of blocking the event loop.

Domain failures propagate as auth.errors exceptions and are turned into the
response envelope by the handlers in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import (
    CHANGE_PASSWORD_LIMIT,
    FORGOT_PASSWORD_LIMIT,
    LOGIN_LIMIT,
    REFRESH_LIMIT,
    REGISTER_LIMIT,
    RESET_PASSWORD_LIMIT,
    limiter,
)
from api.models import (
    ApiResponse,
    AuthData,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenData,
    UserView,
)
from auth.dependencies import get_current_user, get_session_manager
from auth.models import User
from auth.session import SessionManager

# Auth policy:
# - POST /auth/register, /login, /refresh, /forgot-password, /reset-password: public
# - POST /auth/change-password, /logout and GET /auth/me: Bearer access token
router = APIRouter()


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(REGISTER_LIMIT)
@router.post("/auth/register", response_model=ApiResponse[AuthData], status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Create an account and start its first session."""
    session = sessions.register(body.email, body.first_name, body.last_name, body.password)
    envelope = ApiResponse.ok(AuthData.from_session(session), "User registered successfully")
    return _no_store(envelope.model_dump(), status_code=201)


@limiter.limit(LOGIN_LIMIT)
@router.post("/auth/login", response_model=ApiResponse[AuthData])
def login(
    request: Request,
    body: LoginRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body
    ("invalid_credentials") so the response does not reveal which one it was.
    """
    session = sessions.login(body.email, body.password)
    return _no_store(ApiResponse.ok(AuthData.from_session(session), "Login successful").model_dump())


@limiter.limit(REFRESH_LIMIT)
@router.post("/auth/refresh", response_model=ApiResponse[TokenData])
def refresh(
    request: Request,
    body: RefreshRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Exchange the current refresh token for a new pair. The old one stops working."""
    pair = sessions.refresh(body.refresh_token)
    return _no_store(ApiResponse.ok(TokenData.from_pair(pair), "Tokens refreshed successfully").model_dump())


@limiter.limit(FORGOT_PASSWORD_LIMIT)
@router.post("/auth/forgot-password", response_model=ApiResponse[None])
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse:
    """Request a password reset code. The response never reveals whether the email exists.

    The email is sent after the response, so its latency is not observable.
    """
    message = sessions.forgot_password(body.email, defer=background_tasks.add_task)
    return ApiResponse.ok(None, message)


@limiter.limit(RESET_PASSWORD_LIMIT)
@router.post("/auth/reset-password", response_model=ApiResponse[None])
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse:
    """Set a new password using the emailed code. Ends every existing session."""
    sessions.reset_password(body.email, body.otp_code, body.new_password)
    return ApiResponse.ok(None, "Password reset successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@limiter.limit(CHANGE_PASSWORD_LIMIT)
@router.post("/auth/change-password", response_model=ApiResponse[None])
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse:
    """Change the password of the signed-in user. Ends every existing session."""
    sessions.change_password(current_user.public_id, body.current_password, body.new_password)
    return ApiResponse.ok(None, "Password changed successfully")


@router.post("/auth/logout", response_model=ApiResponse[None])
def logout(
    current_user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse:
    """Revoke the stored refresh token. The access token expires on its own."""
    sessions.logout(current_user.public_id)
    return ApiResponse.ok(None, "Logged out successfully")


@router.get("/auth/me", response_model=ApiResponse[UserView])
def me(current_user: User = Depends(get_current_user)) -> ApiResponse:
    """Return the public view of the currently authenticated user."""
    return ApiResponse.ok(UserView.from_public(current_user.to_public()))
