"""RBAC utilities for FastAPI dependencies.

Provides a `require_roles(*roles)` factory that returns a dependency ensuring
the authenticated user (from `get_current_user`) possesses all required roles,
plus the `is_privileged` predicate used by read paths.
"""

from typing import Callable
from fastapi import Depends, HTTPException, status
from .auth import get_current_user, User


def require_roles(*required: str) -> Callable[[User], User]:
    """Create a dependency that enforces presence of given roles.

    Args:
        required: One or more role names the user must have.

    Returns:
        A FastAPI dependency callable that:
          - receives the current `User` (via `Depends(get_current_user)`)
          - raises 403 if the user's roles do not include all `required`
          - otherwise returns the `User`
    """
    def wrapper(user: User = Depends(get_current_user)) -> User:
        """Validate the current user's roles against the required set."""
        if not set(required).issubset(set(user.roles)):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return user

    return wrapper


def is_privileged(user: User | None) -> bool:
    """True when the caller may see content in every moderation state."""
    return user is not None and user.is_moderator


def require_owner_or_moderator(user: User, owner_id: str) -> None:
    """Raise 403 unless `user` owns the resource or is a moderator."""
    if user.sub != owner_id and not user.is_moderator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not the owner",
        )
