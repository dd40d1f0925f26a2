"""Referral management API v1 endpoints."""

import io
from enum import Enum

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from redamigos.auth.middleware import require_auth
from redamigos.logging_config import get_logger
from redamigos.referral.models import ReferralCreate, ReferralUpdate
from redamigos.referral.service import referral_service
from redamigos.storage.export import write_csv, write_jsonl
from redamigos.storage.models import ReferralStatus
from redamigos.storage.schemas import ReferralRecord, UserProfile

logger = get_logger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


class ExportFormat(str, Enum):
    """Export format options."""
    CSV = "csv"
    JSONL = "jsonl"


class ReferralListResponse(BaseModel):
    """Page of referrals plus the exact total."""
    items: list[ReferralRecord]
    total: int


@router.get("", response_model=ReferralListResponse)
async def list_referrals(
    search: str | None = Query(default=None, max_length=100),
    status_filter: ReferralStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user: UserProfile = Depends(require_auth),
):
    """List my referrals, newest first."""
    items, total = referral_service.list_referrals(
        user.id, search=search, status=status_filter, limit=limit, offset=offset
    )
    return ReferralListResponse(items=items, total=total)


@router.post("", response_model=ReferralRecord, status_code=status.HTTP_201_CREATED)
async def add_referral(body: ReferralCreate, user: UserProfile = Depends(require_auth)):
    """Register a person I recruited. Both consents are required."""
    return referral_service.add_referral(user.id, body)


@router.get("/export")
async def export_referrals(
    format: ExportFormat = ExportFormat.CSV,
    user: UserProfile = Depends(require_auth),
):
    """Download all my referrals as CSV or JSONL."""
    items, _ = referral_service.list_referrals(user.id)

    buffer = io.StringIO()
    if format == ExportFormat.CSV:
        count = write_csv(items, buffer)
        media_type = "text/csv"
    else:
        count = write_jsonl(items, buffer)
        media_type = "application/x-ndjson"
    buffer.seek(0)

    logger.info("referrals_exported", user_id=user.id, format=format.value, count=count)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="referrals.{format.value}"'},
    )


@router.get("/{referral_id}", response_model=ReferralRecord)
async def get_referral(referral_id: str, user: UserProfile = Depends(require_auth)):
    return referral_service.get_referral(user.id, referral_id)


@router.patch("/{referral_id}", response_model=ReferralRecord)
async def update_referral(referral_id: str, body: ReferralUpdate, user: UserProfile = Depends(require_auth)):
    """Edit one of my referrals."""
    return referral_service.update_referral(user.id, referral_id, body)


@router.delete("/{referral_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_referral(referral_id: str, user: UserProfile = Depends(require_auth)):
    """Remove one of my referrals."""
    referral_service.delete_referral(user.id, referral_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
