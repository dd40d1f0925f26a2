"""Referral code minting and resolution."""

import secrets
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt

from redamigos.errors import (
    CampaignError,
    GenerationCollision,
    GenerationExhausted,
    NotFoundError,
    TransientError,
)
from redamigos.logging_config import get_logger
from redamigos.settings import settings
from redamigos.storage.db import Database, db
from redamigos.storage.repo import UserRepository

logger = get_logger(__name__)

T = TypeVar("T")

# Excludes confusing characters: 0, O, I, l, 1
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class ReferralCodeService:
    """Mints shareable invite codes and resolves them to their owner.

    Uniqueness is ultimately the store's unique constraint; ``generate`` only
    avoids codes already issued. Callers inserting a code must still treat
    an integrity failure as a collision and ask for a new one.
    """

    def __init__(
        self,
        database: Database | None = None,
        prefix: str | None = None,
        length: int | None = None,
        max_attempts: int | None = None,
    ):
        self.db = database or db
        self.prefix = prefix or settings.referral_code_prefix
        self.length = length or settings.referral_code_length
        self.max_attempts = max_attempts or settings.referral_code_max_attempts
        self.logger = get_logger(__name__)

    def _mint(self) -> str:
        """Random candidate, e.g. GGF-K7M2QX."""
        suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(self.length))
        return f"{self.prefix}-{suffix}"

    def fallback_code(self, identification: str) -> str:
        """Deterministic candidate derived from an identification.

        Not guaranteed unique: two people sharing the last digits collide.
        """
        return f"{self.prefix}-{identification[-self.length:].upper()}"

    def generate(self, identification: str | None = None) -> str:
        """Get a code that is not issued yet.

        Uses the store-side generator; when the store cannot run it, derives
        a candidate from ``identification`` instead.

        Raises:
            GenerationCollision: If the minted candidate is already taken
            TransientError: If the store failed and there is nothing to derive from
        """
        try:
            with self.db.session() as session:
                return UserRepository(session).generate_referral_code(self._mint)
        except GenerationCollision:
            raise
        except (CampaignError, SQLAlchemyError) as e:
            if not identification:
                raise TransientError() from e
            code = self.fallback_code(identification)
            self.logger.warning("referral_code_fallback_used", code=code, error=str(e))
            return code

    def issue(self, insert: Callable[[str], T], identification: str | None = None) -> T:
        """Run ``insert`` with fresh codes until the store accepts one.

        ``insert`` must raise GenerationCollision when the code violates the
        unique constraint.

        Raises:
            GenerationExhausted: After ``max_attempts`` collisions
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception_type(GenerationCollision),
            reraise=False,
        )
        try:
            for attempt in retrying:
                with attempt:
                    code = self.generate(identification)
                    return insert(code)
        except RetryError as e:
            self.logger.error("referral_code_exhausted", attempts=self.max_attempts)
            raise GenerationExhausted(self.max_attempts) from e

    def resolve(self, code: str) -> str:
        """Resolve a code to its owner's user id.

        Raises:
            NotFoundError: If no user holds the code
        """
        normalized = normalize_code(code)
        if not normalized:
            raise NotFoundError("Invalid referral code")

        with self.db.session() as session:
            user = UserRepository(session).get_by_code(normalized)
            if not user:
                self.logger.info("referral_code_not_found", code=normalized)
                raise NotFoundError("Invalid referral code")
            return user.id

    def lookup(self, code: str) -> dict[str, str] | None:
        """Public landing-page check: who owns this code, if anyone.

        Returns:
            ``{"user_id", "referrer_name", "code"}`` or None
        """
        normalized = normalize_code(code)
        if not normalized:
            return None

        with self.db.session() as session:
            user = UserRepository(session).get_by_code(normalized)
            if not user:
                return None
            return {
                "user_id": user.id,
                "referrer_name": user.full_name,
                "code": user.referral_code,
            }

    def share_link(self, code: str) -> str:
        """Public registration URL embedding ``code``."""
        return f"{settings.public_app_url.rstrip('/')}/register/{code}"


# Singleton instance
referral_code_service = ReferralCodeService()
