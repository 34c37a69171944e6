"""Auth helpers for FastAPI endpoints.

Provides:
- `User` Pydantic model for JWT subject
- `verify_jwt` to decode/validate RS256 JWTs
- `get_optional_user` / `get_current_user` FastAPI dependencies using HTTP Bearer auth

Sessions and token issuance belong to the identity provider; this module only
turns a bearer token into a principal the services can use as a predicate input.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from pydantic import BaseModel
from .config import Settings, get_settings

security = HTTPBearer(auto_error=False)

MODERATOR_ROLE = "moderator"


class User(BaseModel):
    """Authenticated user extracted from a validated JWT."""
    sub: str
    email: str | None = None
    roles: list[str] = []

    @property
    def is_moderator(self) -> bool:
        return MODERATOR_ROLE in self.roles


def verify_jwt(token: str, settings: Settings) -> User:
    """Decode and validate a JWT and return a `User`.

    Validates signature (RS256), audience, and expiration using settings.
    Raises HTTP 401 on any validation failure.

    Args:
        token: Bearer token string (JWT).
        settings: Settings holding the public key and audience.

    Returns:
        User: Parsed user info from token claims.
    """
    if not settings.JWT_PUBLIC_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token verification is not configured",
        )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_PUBLIC_KEY,
            algorithms=["RS256"],
            audience=settings.OIDC_AUDIENCE,
            options={"verify_exp": True},
        )
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )
    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
        )
    return User(
        sub=payload["sub"],
        email=payload.get("email"),
        roles=payload.get("roles", []),
    )


def get_optional_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(security),
) -> User | None:
    """FastAPI dependency returning the caller, or None for anonymous requests.

    A token that is present but invalid still fails with 401.
    """
    if not creds:
        return None
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return verify_jwt(creds.credentials, settings)


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    """FastAPI dependency to extract the current user from Authorization header.

    Raises:
        HTTPException: 401 if credentials are missing or token is invalid.
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing credentials",
        )
    return user
