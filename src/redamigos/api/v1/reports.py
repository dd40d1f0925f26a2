"""Dashboard and report API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from redamigos.activity.recorder import activity_recorder
from redamigos.auth.middleware import can_view_network, require_auth
from redamigos.logging_config import get_logger
from redamigos.network.aggregator import network_aggregator
from redamigos.settings import settings
from redamigos.storage.schemas import ActivityItem, NetworkResult, RankingResult, UserProfile, UserStats

logger = get_logger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/network", response_model=NetworkResult)
async def get_network(
    root_id: str | None = Query(default=None, description="Defaults to the current user"),
    user: UserProfile = Depends(require_auth),
):
    """Referral tree below a user, ordered by level then registration time.

    Only the root itself or an admin may read it.
    """
    root_id = root_id or user.id
    if not can_view_network(user, root_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own network",
        )
    return network_aggregator.get_network(root_id)


@router.get("/ranking", response_model=RankingResult)
async def get_ranking(
    limit: int = Query(default=settings.ranking_default_limit, ge=1, le=1000),
    user: UserProfile = Depends(require_auth),
):
    """Top users by direct referrals."""
    return network_aggregator.get_ranking(limit=limit)


@router.get("/stats", response_model=UserStats)
async def get_stats(user: UserProfile = Depends(require_auth)):
    """Dashboard numbers for the current user."""
    return network_aggregator.get_stats(user.id)


@router.get("/activity", response_model=list[ActivityItem])
async def get_activity(
    limit: int = Query(default=settings.activity_default_limit, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user: UserProfile = Depends(require_auth),
):
    """My activity feed, newest first.

    A page holds at most 500 items; larger requests are rejected with 422.
    Read further back with ``offset``.
    """
    return activity_recorder.list_activity(user.id, limit=limit, offset=offset)
