"""Authentication dependencies for FastAPI."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from redamigos.auth.identity import identity_service
from redamigos.logging_config import get_logger
from redamigos.storage.models import UserRole
from redamigos.storage.schemas import UserProfile

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> UserProfile | None:
    """Get current authenticated user.

    Returns:
        Profile or None if not authenticated
    """
    if not credentials:
        return None

    user = identity_service.user_from_token(credentials.credentials)
    if user:
        # Store user in request state for later use
        request.state.user = user
    return user


def require_auth(user: UserProfile | None = Depends(get_current_user)) -> UserProfile:
    """Require authentication - raises 401 if not authenticated.

    Raises:
        HTTPException: 401 if not authenticated
    """
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_admin(user: UserProfile = Depends(require_auth)) -> UserProfile:
    """Require admin role.

    Raises:
        HTTPException: 403 if not admin
    """
    if user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


def can_view_network(user: UserProfile, root_user_id: str) -> bool:
    """Only the root itself or an admin may read a network."""
    return user.id == root_user_id or user.role == UserRole.ADMIN
