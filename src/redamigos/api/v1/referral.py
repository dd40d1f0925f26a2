"""Referral code API v1 endpoints: share kit and public landing checks."""

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from redamigos.api.rate_limit import limiter
from redamigos.auth.middleware import require_auth
from redamigos.logging_config import get_logger
from redamigos.referral.codes import referral_code_service
from redamigos.referral.qr import make_qr_png
from redamigos.storage.schemas import UserProfile

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class ReferralCodeResponse(BaseModel):
    """Response with user's referral code."""
    code: str
    link: str


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referrer_name: str | None = None


# ==================== ENDPOINTS ====================


@router.get("/code", response_model=ReferralCodeResponse)
async def get_referral_code(user: UserProfile = Depends(require_auth)):
    """Get current user's referral code and share link."""
    return ReferralCodeResponse(
        code=user.referral_code,
        link=referral_code_service.share_link(user.referral_code),
    )


@router.get("/link")
async def get_shareable_link(user: UserProfile = Depends(require_auth)):
    """Share link plus a ready-to-send message."""
    link = referral_code_service.share_link(user.referral_code)
    return {
        "link": link,
        "code": user.referral_code,
        "share_text": f"{user.first_name} te invita a la Red de Amigos. Regístrate aquí: {link}",
    }


@router.get("/qr")
async def get_qr_code(user: UserProfile = Depends(require_auth)):
    """PNG QR code of the share link."""
    png = make_qr_png(referral_code_service.share_link(user.referral_code))
    return Response(content=png, media_type="image/png")


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
async def validate_referral_code(request: Request, body: ValidateCodeRequest):
    """Validate a referral code for the public registration page.

    Read-only and unauthenticated; an unknown code is not an error.
    """
    found = referral_code_service.lookup(body.code)
    if not found:
        return ValidateCodeResponse(valid=False)

    return ValidateCodeResponse(valid=True, referrer_name=found["referrer_name"])
