"""Input models for referral management."""

from datetime import date

from pydantic import BaseModel, EmailStr, Field

from redamigos.storage.models import Gender, ReferralStatus, Zone


class ReferralCreate(BaseModel):
    """Data collected by the "register referral" form."""
    identification: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    gender: Gender | None = None
    birth_date: date | None = None
    phone: str | None = Field(default=None, max_length=32)
    email: EmailStr | None = None
    department: str | None = Field(default=None, max_length=100)
    municipality: str = Field(..., min_length=1, max_length=100)
    zone: Zone | None = None
    neighborhood: str | None = Field(default=None, max_length=100)
    occupation: str | None = Field(default=None, max_length=100)
    status: ReferralStatus = ReferralStatus.ACTIVE
    terms_accepted: bool = False
    privacy_accepted: bool = False


class ReferralUpdate(BaseModel):
    """Editable referral fields. Linkage (referred_by, user_id) is not editable."""
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    gender: Gender | None = None
    birth_date: date | None = None
    phone: str | None = Field(default=None, max_length=32)
    email: EmailStr | None = None
    department: str | None = Field(default=None, max_length=100)
    municipality: str | None = Field(default=None, min_length=1, max_length=100)
    zone: Zone | None = None
    neighborhood: str | None = Field(default=None, max_length=100)
    occupation: str | None = Field(default=None, max_length=100)
    status: ReferralStatus | None = None
