"""
api/routes/v1/users.py -- Read-only user lookup.

Routes:
  GET /api/v1/users/{user_id}  -- public view of one user by public UUID (requires auth)

There is no listing endpoint: with no roles in this service, a paginated user
list would hand every signed-in caller the full account directory.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import ApiResponse, UserView
from auth.dependencies import get_current_user, get_user_store
from auth.errors import NotFound
from auth.models import User
from auth.protocols import CredentialStore

router = APIRouter()


@router.get("/users/{user_id}", response_model=ApiResponse[UserView])
def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    users: CredentialStore = Depends(get_user_store),
) -> ApiResponse:
    """Return the public view of a live user. Soft-deleted or unknown ids are 404."""
    user = users.find_by_id(user_id)
    if user is None:
        raise NotFound("User not found.")
    return ApiResponse.ok(UserView.from_public(user.to_public()), "User retrieved successfully")
