"""Database models for the referral network - unified model set."""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum as SQLEnum, ForeignKey, String, Text, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from redamigos.errors import ImmutableRecordError


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class UserRole(str, Enum):
    """Roles inside the campaign."""
    ADMIN = "admin"
    COORDINATOR = "coordinator"
    VOLUNTEER = "volunteer"
    ACTIVIST = "activist"


class ReferralStatus(str, Enum):
    """Referral lifecycle status."""
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"


class Gender(str, Enum):
    MALE = "M"
    FEMALE = "F"
    OTHER = "O"


class Zone(str, Enum):
    URBAN = "Urbana"
    RURAL = "Rural"


class AuthIdentity(Base):
    """Login credential, kept apart from the campaign profile.

    The identity row is created first during registration; a profile that
    fails afterwards leaves this row orphaned until reconciled by hand.
    """

    __tablename__ = "auth_identities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_sign_in_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<AuthIdentity(id={self.id}, email={self.email})>"


class User(Base):
    """Registered campaign friend (volunteer, coordinator, ...)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    auth_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("auth_identities.id"), unique=True, nullable=True
    )

    # Identity
    identification: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole), default=UserRole.VOLUNTEER, nullable=False)

    # Network
    referral_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    parent_user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True, index=True
    )

    # Location / contact
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    municipality: Mapped[str | None] = mapped_column(String(100), nullable=True)
    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(String(100), nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    occupation: Mapped[str | None] = mapped_column(String(100), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    parent: Mapped["User | None"] = relationship("User", remote_side="User.id")
    referrals: Mapped[list["Referral"]] = relationship(
        "Referral", back_populates="referrer", foreign_keys="Referral.referred_by"
    )

    @validates("referral_code")
    def _validate_referral_code(self, key: str, value: str) -> str:
        """Referral codes are immutable once issued."""
        current = self.__dict__.get("referral_code")
        if current is not None and current != value:
            raise ValueError("referral_code cannot be changed once issued")
        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<User(id={self.id}, identification={self.identification}, code={self.referral_code})>"


class Referral(Base):
    """Person recruited by a user; may later register as a user too."""

    __tablename__ = "referrals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    identification: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Demographics / location
    gender: Mapped[str | None] = mapped_column(String(1), nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    municipality: Mapped[str] = mapped_column(String(100), nullable=False)
    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(String(100), nullable=True)
    occupation: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[ReferralStatus] = mapped_column(
        SQLEnum(ReferralStatus), default=ReferralStatus.ACTIVE, nullable=False
    )

    # Linkage
    referred_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    # Consent (Ley 1581 de 2012)
    terms_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    privacy_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    referrer: Mapped[User] = relationship("User", back_populates="referrals", foreign_keys=[referred_by])
    linked_user: Mapped[User | None] = relationship("User", foreign_keys=[user_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Referral(id={self.id}, identification={self.identification}, referred_by={self.referred_by})>"


class ActivityLog(Base):
    """Append-only activity feed entry."""

    __tablename__ = "activity_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<ActivityLog(id={self.id}, user={self.user_id}, action={self.action})>"


@event.listens_for(ActivityLog, "before_update")
def _reject_activity_update(mapper, connection, target) -> None:
    raise ImmutableRecordError()


@event.listens_for(ActivityLog, "before_delete")
def _reject_activity_delete(mapper, connection, target) -> None:
    raise ImmutableRecordError()
