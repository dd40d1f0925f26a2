"""Authentication and profile API v1 endpoints."""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from redamigos.api.rate_limit import limiter
from redamigos.auth.identity import identity_service, synthesize_email
from redamigos.auth.middleware import require_admin, require_auth
from redamigos.auth.models import LoginRequest, ParentAssignment, ProfileUpdate, RegisterRequest, TokenResponse
from redamigos.auth.profile import profile_service
from redamigos.auth.registration import RegistrationState, registration_workflow
from redamigos.errors import AuthError, CampaignError, TransientError
from redamigos.logging_config import get_logger
from redamigos.settings import settings
from redamigos.storage.schemas import UserProfile
from redamigos.validators import normalize_identification

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Terminal registration state -> HTTP status
_FAILURE_STATUS = {
    RegistrationState.CODE_INVALID: status.HTTP_404_NOT_FOUND,
    RegistrationState.PROFILE_CREATION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _token_response(access_token: str, user: UserProfile) -> TokenResponse:
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.jwt_expire_hours * 3600,
        user=user,
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(request: Request, body: RegisterRequest):
    """Register a new friend, optionally through a referral code.

    Signs the new user in on success.
    """
    result = registration_workflow.register(body)

    if not result.success:
        error = result.error or CampaignError()
        if isinstance(error, TransientError) or result.state not in _FAILURE_STATUS:
            # Identity failures carry their own error class (conflict, transient)
            raise error
        return JSONResponse(
            status_code=_FAILURE_STATUS[result.state],
            content={"detail": error.message, "state": result.state.value},
        )

    return _token_response(result.session.access_token, result.user)


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(request: Request, body: LoginRequest):
    """Sign in with identification and password."""
    identification = normalize_identification(body.identification)
    auth_session = identity_service.sign_in(synthesize_email(identification), body.password)

    user = identity_service.user_from_token(auth_session.access_token)
    if user is None:
        # Identity without a profile: registration never finished
        logger.warning("login_without_profile", identity_id=auth_session.identity_id)
        raise AuthError()

    return _token_response(auth_session.access_token, user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(user: UserProfile = Depends(require_auth)):
    """Sign out. Tokens are stateless; the client discards its copy."""
    identity_service.sign_out()


@router.get("/me", response_model=UserProfile)
async def get_me(user: UserProfile = Depends(require_auth)):
    """Get the current profile."""
    return user


@router.patch("/me", response_model=UserProfile)
async def update_me(body: ProfileUpdate, user: UserProfile = Depends(require_auth)):
    """Update contact and location fields of the current profile."""
    return profile_service.update_profile(user.id, body)


@router.put("/users/{user_id}/parent", response_model=UserProfile)
async def reassign_parent(
    user_id: str,
    body: ParentAssignment,
    admin: UserProfile = Depends(require_admin),
):
    """Move a user under another referrer (admin only)."""
    return profile_service.reassign_parent(admin.id, user_id, body.parent_user_id)
