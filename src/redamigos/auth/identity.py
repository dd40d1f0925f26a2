"""Identity service: credentials, JWT sessions and sign-in notifications."""

import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from redamigos.auth.models import AuthSession
from redamigos.errors import AuthError, ConflictError, NotFoundError
from redamigos.logging_config import get_logger
from redamigos.settings import settings
from redamigos.storage.db import Database, db
from redamigos.storage.models import AuthIdentity, User
from redamigos.storage.repo import UserRepository
from redamigos.storage.schemas import UserProfile, map_row

logger = get_logger(__name__)

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.password_hash_rounds,
)

# JWT settings
JWT_ALGORITHM = "HS256"


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


AuthListener = Callable[[AuthEvent, AuthSession | None], None]


def synthesize_email(identification: str, domain: str | None = None) -> str:
    """Login e-mail for an identification. Not a real mailbox."""
    return f"{identification}@{domain or settings.campaign_domain}".lower()


def identification_from_email(email: str) -> str:
    """Inverse of synthesize_email."""
    return email.split("@", 1)[0]


class IdentityService:
    """Authentication service for campaign identities."""

    def __init__(self, database: Database | None = None):
        """Initialize identity service."""
        self.db = database or db
        self.logger = get_logger(__name__)
        self._listeners: list[AuthListener] = []
        self._lock = threading.Lock()

    # ==================== PASSWORD ====================

    def _truncate_password(self, password: str) -> str:
        """Truncate password to 72 bytes (bcrypt limit)."""
        return password.encode("utf-8")[:72].decode("utf-8", errors="ignore")

    def hash_password(self, password: str) -> str:
        return pwd_context.hash(self._truncate_password(password))

    def verify_password(self, password: str, hashed: str) -> bool:
        return pwd_context.verify(self._truncate_password(password), hashed)

    # ==================== NOTIFICATIONS ====================

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register ``listener`` for SIGNED_IN / SIGNED_OUT.

        Returns:
            Callable that unregisters the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: AuthEvent, session: AuthSession | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, session)
            except Exception as e:
                self.logger.warning("auth_listener_failed", auth_event=event.value, error=str(e))

    # ==================== IDENTITIES ====================

    def sign_up(self, email: str, secret: str) -> str:
        """Create a credential.

        Returns:
            New identity id

        Raises:
            ConflictError: If the e-mail is already registered
        """
        email = email.lower()
        try:
            with self.db.session() as session:
                existing = session.scalar(select(AuthIdentity).where(AuthIdentity.email == email))
                if existing:
                    raise ConflictError("This identification is already registered")

                identity = AuthIdentity(email=email, password_hash=self.hash_password(secret))
                session.add(identity)
                session.flush()
                identity_id = identity.id
        except IntegrityError as e:
            raise ConflictError("This identification is already registered") from e

        self.logger.info("identity_created", identity_id=identity_id)
        return identity_id

    def sign_in(self, email: str, secret: str) -> AuthSession:
        """Authenticate and open a session.

        Raises:
            AuthError: Unknown e-mail or wrong secret (same message for both)
        """
        with self.db.session() as session:
            identity = session.scalar(select(AuthIdentity).where(AuthIdentity.email == email.lower()))
            if not identity or not self.verify_password(secret, identity.password_hash):
                self.logger.info("sign_in_rejected", email=email.lower())
                raise AuthError()

            identity.last_sign_in_at = datetime.utcnow()
            identity_id = identity.id
            user = UserRepository(session).get_by_auth_id(identity_id)
            user_id = user.id if user else None

        return self.issue_session(identity_id, user_id)

    def issue_session(self, identity_id: str, user_id: str | None) -> AuthSession:
        """Mint a session token for an already verified identity."""
        expires_at = datetime.utcnow() + timedelta(hours=settings.jwt_expire_hours)
        payload = {
            "sub": identity_id,
            "uid": user_id,
            "exp": expires_at,
            "iat": datetime.utcnow(),
        }
        token = jwt.encode(payload, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)
        auth_session = AuthSession(
            identity_id=identity_id,
            user_id=user_id,
            access_token=token,
            expires_at=expires_at,
        )

        self.logger.info("signed_in", identity_id=identity_id, user_id=user_id)
        self._emit(AuthEvent.SIGNED_IN, auth_session)
        return auth_session

    def sign_out(self, auth_session: AuthSession | None = None) -> None:
        """End the session. Tokens are stateless, so this only notifies listeners."""
        self.logger.info("signed_out", identity_id=auth_session.identity_id if auth_session else None)
        self._emit(AuthEvent.SIGNED_OUT, None)

    # ==================== TOKENS ====================

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify and decode a session token.

        Returns:
            Token payload or None if invalid or expired
        """
        try:
            return jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            self.logger.debug("token_verification_failed", error=str(e))
            return None

    def user_from_token(self, token: str) -> UserProfile | None:
        """Profile behind a session token, or None."""
        payload = self.verify_token(token)
        if not payload or not payload.get("sub"):
            return None

        with self.db.session() as session:
            user = UserRepository(session).get_by_auth_id(payload["sub"])
            return map_row(user, UserProfile)

    # ==================== RECONCILIATION ====================

    def find_orphaned_identities(self) -> list[dict[str, Any]]:
        """Identities that never got a profile (failed registrations)."""
        with self.db.session() as session:
            rows = session.execute(
                select(AuthIdentity.id, AuthIdentity.email, AuthIdentity.created_at)
                .outerjoin(User, User.auth_id == AuthIdentity.id)
                .where(User.id.is_(None))
                .order_by(AuthIdentity.created_at.asc())
            ).all()
            return [
                {
                    "identity_id": r.id,
                    "identification": identification_from_email(r.email),
                    "email": r.email,
                    "created_at": r.created_at,
                }
                for r in rows
            ]

    def delete_identity(self, identity_id: str) -> None:
        """Remove an identity that has no profile.

        Raises:
            NotFoundError: Unknown identity
            ConflictError: The identity still has a profile
        """
        with self.db.session() as session:
            identity = session.get(AuthIdentity, identity_id)
            if not identity:
                raise NotFoundError("Unknown identity")
            if UserRepository(session).get_by_auth_id(identity_id):
                raise ConflictError("Identity still has a profile")
            session.delete(identity)

        self.logger.warning("identity_deleted", identity_id=identity_id)


# Singleton instance
identity_service = IdentityService()
