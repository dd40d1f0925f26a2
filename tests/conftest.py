"""
Pytest configuration and shared fixtures.

The environment is set before anything from redamigos is imported so the
module-level settings and database point at a throwaway SQLite file.
"""
import itertools
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="redamigos-tests-"))
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["SESSION_FILE"] = str(_TMP / "session.json")
os.environ["PUBLIC_APP_URL"] = "https://amigos.example.org"

import pytest
from sqlalchemy.exc import OperationalError

from redamigos.storage.db import db
from redamigos.storage.models import ActivityLog, AuthIdentity, Referral, User, UserRole
from redamigos.storage.repo import ReferralRepository, UserRepository
from redamigos.storage.schemas import ReferralRecord, UserProfile, map_row

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
def clean_database():
    """Fresh schema for every test"""
    db.drop_tables()
    db.create_tables()
    yield


@pytest.fixture
def store_down():
    """Factory for the error SQLAlchemy raises when the store is unreachable"""
    def _make(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("could not connect to server"))
    return _make


@pytest.fixture
def make_user():
    """Insert a user directly, bypassing registration"""
    counter = itertools.count(1)

    def _make(
        first_name: str = "Ana",
        last_name: str = "Pérez",
        parent_user_id: str | None = None,
        created_at: datetime | None = None,
        role: UserRole = UserRole.VOLUNTEER,
        identification: str | None = None,
        referral_code: str | None = None,
        municipality: str = "Bogotá",
    ) -> UserProfile:
        n = next(counter)
        with db.session() as session:
            user = UserRepository(session).create(
                identification=identification or f"{1000000 + n}",
                first_name=first_name,
                last_name=last_name,
                role=role,
                referral_code=referral_code or f"GGF-TST{n:03d}",
                parent_user_id=parent_user_id,
                municipality=municipality,
                created_at=created_at or BASE_TIME + timedelta(minutes=n),
            )
            return map_row(user, UserProfile)

    return _make


@pytest.fixture
def make_referral():
    """Insert a referral row directly, bypassing consent and cycle checks"""
    counter = itertools.count(1)

    def _make(
        owner_id: str,
        first_name: str = "Luis",
        last_name: str = "Gómez",
        created_at: datetime | None = None,
        user_id: str | None = None,
        identification: str | None = None,
    ) -> ReferralRecord:
        n = next(counter)
        with db.session() as session:
            referral = ReferralRepository(session).create(
                owner_id,
                identification=identification or f"{5000000 + n}",
                first_name=first_name,
                last_name=last_name,
                municipality="Soacha",
                user_id=user_id,
                terms_accepted=True,
                privacy_accepted=True,
                created_at=created_at or BASE_TIME + timedelta(hours=n),
            )
            return map_row(referral, ReferralRecord)

    return _make


@pytest.fixture
def row_counts():
    """Current row count per table"""
    def _counts() -> dict[str, int]:
        with db.session() as session:
            return {
                "identities": session.query(AuthIdentity).count(),
                "users": session.query(User).count(),
                "referrals": session.query(Referral).count(),
                "activity": session.query(ActivityLog).count(),
            }
    return _counts
