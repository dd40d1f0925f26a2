"""Typed entities handed out of the store boundary.

Rows leaving the repositories are converted here. A row that fails shape
validation is logged and dropped instead of leaking untyped data inward.
"""

from datetime import date, datetime
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from redamigos.logging_config import get_logger
from redamigos.storage.models import ReferralStatus, UserRole

logger = get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class UserProfile(BaseModel):
    """Campaign user profile."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    auth_id: str | None = None
    identification: str
    email: str | None = None
    phone: str | None = None
    first_name: str
    last_name: str
    role: UserRole
    referral_code: str
    parent_user_id: str | None = None
    department: str | None = None
    municipality: str | None = None
    zone: str | None = None
    neighborhood: str | None = None
    birth_date: date | None = None
    occupation: str | None = None
    avatar_url: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ReferralRecord(BaseModel):
    """Referral row as seen by callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    identification: str
    first_name: str
    last_name: str
    gender: str | None = None
    birth_date: date | None = None
    phone: str | None = None
    email: str | None = None
    department: str | None = None
    municipality: str
    zone: str | None = None
    neighborhood: str | None = None
    occupation: str | None = None
    status: ReferralStatus
    referred_by: str
    user_id: str | None = None
    terms_accepted: bool
    privacy_accepted: bool
    created_at: datetime
    updated_at: datetime


class ActivityItem(BaseModel):
    """Activity feed entry."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    action: str
    entity_type: str
    entity_id: str | None = None
    description: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class NetworkNode(BaseModel):
    """One person in a user's referral tree (derived, never stored)."""

    id: str
    name: str
    level: int
    parent_id: str | None
    children_count: int = 0
    created_at: datetime
    cycle_detected: bool = False


class NetworkResult(BaseModel):
    """Ordered network plus the path that produced it."""

    root_id: str
    nodes: list[NetworkNode] = Field(default_factory=list)
    degraded: bool = False


class UserRanking(BaseModel):
    """Ranking entry (derived)."""

    id: str
    name: str
    referral_code: str
    municipality: str | None = None
    total_referrals: int = 0
    network_size: int = 0
    rank: int
    created_at: datetime


class RankingResult(BaseModel):
    """Ranking entries; degraded means the aggregate query was unavailable."""

    entries: list[UserRanking] = Field(default_factory=list)
    degraded: bool = False


class UserStats(BaseModel):
    """Dashboard statistics for one user."""

    total_users: int
    total_referrals: int
    total_network: int
    new_this_month: int
    user_rank: int | None
    degraded: bool = False


def map_row(row: Any, schema: type[SchemaT]) -> SchemaT | None:
    """Convert one ORM object or mapping into a typed entity.

    Returns None (and logs) when the row does not fit the schema.
    """
    if row is None:
        return None
    try:
        return schema.model_validate(row)
    except PydanticValidationError as e:
        logger.warning(
            "row_rejected",
            schema=schema.__name__,
            row_id=getattr(row, "id", None),
            errors=e.error_count(),
        )
        return None


def map_rows(rows: Iterable[Any], schema: type[SchemaT]) -> list[SchemaT]:
    """Convert rows, dropping the ones that fail validation."""
    mapped = []
    for row in rows:
        item = map_row(row, schema)
        if item is not None:
            mapped.append(item)
    return mapped
