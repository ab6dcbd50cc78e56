"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Authenticated routes take an access token in the Authorization: Bearer
header. Refresh tokens are rejected here: TokenCodec.verify() is called with
kind=ACCESS, so a refresh token presented as a bearer credential fails.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: auth/dependencies.py may import from fastapi (for
HTTPException/Request) because this module is part of the FastAPI dependency
injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.protocols import CredentialStore
from auth.session import SessionManager
from auth.tokens import TokenKind


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_user_store(request: Request) -> CredentialStore:
    return request.app.state.user_store


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def try_get_current_user(request: Request) -> User | None:
    """Resolve the Bearer access token to a live user, or None.

    A bad token never raises -- callers that need a hard 401 should use
    get_current_user(). Store outages still propagate as StorageUnavailable.
    A valid token for a user that no longer exists (soft-deleted) is None.
    """
    token = _bearer_token(request)
    if not token:
        return None
    sessions: SessionManager = request.app.state.sessions
    result = sessions.codec.verify(token, kind=TokenKind.ACCESS)
    if not result.ok:
        return None
    return get_user_store(request).find_by_id(result.claims.subject)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
