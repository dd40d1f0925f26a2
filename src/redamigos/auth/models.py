"""Request and response models for identity and profile endpoints."""

from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field

from redamigos.storage.models import Zone
from redamigos.storage.schemas import UserProfile


class AuthSession(BaseModel):
    """Signed-in session issued by the identity service."""
    identity_id: str
    user_id: str | None = None
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class LoginRequest(BaseModel):
    """Sign in with identification; the initial secret is the identification itself."""
    identification: str = Field(..., min_length=1, max_length=20)
    password: str = Field(..., min_length=1, max_length=128)


class RegisterRequest(BaseModel):
    """Self-registration form."""
    identification: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=32)
    birth_date: date | None = None
    department: str | None = Field(default=None, max_length=100)
    municipality: str | None = Field(default=None, max_length=100)
    zone: Zone | None = None
    neighborhood: str | None = Field(default=None, max_length=100)
    occupation: str | None = Field(default=None, max_length=100)
    referral_code: str | None = Field(default=None, max_length=20)
    terms_accepted: bool = False
    privacy_accepted: bool = False


class ProfileUpdate(BaseModel):
    """Fields a user may edit on their own profile."""
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=32)
    department: str | None = Field(default=None, max_length=100)
    municipality: str | None = Field(default=None, max_length=100)
    zone: Zone | None = None
    neighborhood: str | None = Field(default=None, max_length=100)
    birth_date: date | None = None
    occupation: str | None = Field(default=None, max_length=100)
    avatar_url: str | None = Field(default=None, max_length=500)


class ParentAssignment(BaseModel):
    """Admin request to move a user under another parent (None detaches)."""
    parent_user_id: str | None = None


class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserProfile
