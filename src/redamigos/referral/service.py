"""Referral service for managing a user's recruited people."""

from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from redamigos.activity.recorder import ActivityAction, ActivityRecorder, activity_recorder
from redamigos.errors import ConflictError, NotFoundError, ReferralCycleError
from redamigos.logging_config import get_logger
from redamigos.referral.models import ReferralCreate, ReferralUpdate
from redamigos.referral.realtime import ChangeBroker, ChangeType, ReferralChange, ReferralFeed, change_broker
from redamigos.storage.db import Database, db
from redamigos.storage.models import ReferralStatus
from redamigos.storage.repo import ReferralRepository, UserRepository
from redamigos.storage.schemas import ReferralRecord, map_row, map_rows
from redamigos.validators import normalize_identification, normalize_phone, require_consent, require_fields

logger = get_logger(__name__)

DUPLICATE_REFERRAL_MESSAGE = "This person is already registered"


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class ReferralService:
    """Service for adding, editing and listing a user's referrals."""

    def __init__(
        self,
        database: Database | None = None,
        recorder: ActivityRecorder | None = None,
        broker: ChangeBroker | None = None,
    ):
        self.db = database or db
        self.recorder = recorder or activity_recorder
        self.broker = broker or change_broker
        self.logger = get_logger(__name__)

    def _publish(self, change_type: ChangeType, owner_id: str, referral_id: str, record: ReferralRecord | None) -> None:
        self.broker.publish(
            ReferralChange(type=change_type, owner_id=owner_id, referral_id=referral_id, record=record)
        )

    def add_referral(self, owner_id: str, data: ReferralCreate) -> ReferralRecord:
        """Register a person recruited by ``owner_id``.

        Args:
            owner_id: Referrer user ID
            data: Referral form data

        Returns:
            Created referral

        Raises:
            ValidationError: Consent missing or malformed identification/phone
            ConflictError: Identification already registered as a referral
            ReferralCycleError: The person is the owner or one of the owner's ancestors
            NotFoundError: Unknown owner
        """
        require_consent(data.terms_accepted, data.privacy_accepted)
        require_fields(
            first_name=data.first_name,
            last_name=data.last_name,
            municipality=data.municipality,
        )
        identification = normalize_identification(data.identification)
        phone = normalize_phone(data.phone)

        try:
            with self.db.session() as session:
                users = UserRepository(session)
                referrals = ReferralRepository(session)

                if not users.get_by_id(owner_id):
                    raise NotFoundError("Unknown profile")

                if referrals.get_by_identification(identification):
                    raise ConflictError(DUPLICATE_REFERRAL_MESSAGE)

                # Person already has an account: keep the informational back-link
                linked_user_id = None
                existing_user = users.get_by_identification(identification)
                if existing_user:
                    if users.would_create_cycle(owner_id, existing_user.id):
                        raise ReferralCycleError()
                    linked_user_id = existing_user.id

                referral = referrals.create(
                    owner_id,
                    identification=identification,
                    first_name=data.first_name.strip(),
                    last_name=data.last_name.strip(),
                    gender=_enum_value(data.gender),
                    birth_date=data.birth_date,
                    phone=phone,
                    email=data.email,
                    department=data.department,
                    municipality=data.municipality.strip(),
                    zone=_enum_value(data.zone),
                    neighborhood=data.neighborhood,
                    occupation=data.occupation,
                    status=data.status,
                    user_id=linked_user_id,
                    terms_accepted=data.terms_accepted,
                    privacy_accepted=data.privacy_accepted,
                )
                record = map_row(referral, ReferralRecord)
        except IntegrityError as e:
            # Lost a race with a concurrent insert of the same identification
            raise ConflictError(DUPLICATE_REFERRAL_MESSAGE) from e

        self.logger.info("referral_added", owner_id=owner_id, referral_id=record.id)
        self._publish(ChangeType.INSERT, owner_id, record.id, record)
        self.recorder.record(
            owner_id,
            ActivityAction.ADD_REFERRAL,
            "referral",
            entity_id=record.id,
            description=f"You registered {record.first_name} {record.last_name}",
        )
        return record

    def update_referral(self, owner_id: str, referral_id: str, changes: ReferralUpdate) -> ReferralRecord:
        """Edit one of the owner's referrals.

        Raises:
            NotFoundError: Referral missing or owned by someone else
            ValidationError: Blank required field, null status or invalid phone
        """
        fields = changes.model_dump(exclude_unset=True)
        if "phone" in fields:
            fields["phone"] = normalize_phone(fields["phone"])
        for key in ("gender", "zone"):
            if key in fields:
                fields[key] = _enum_value(fields[key])
        # Non-nullable columns: an explicit null is a missing value
        for key in ("first_name", "last_name", "municipality", "status"):
            if key in fields:
                require_fields(**{key: fields[key]})

        with self.db.session() as session:
            referral = ReferralRepository(session).get_owned(owner_id, referral_id)
            if not referral:
                raise NotFoundError("Referral not found")
            for key, value in fields.items():
                setattr(referral, key, value)
            session.flush()
            record = map_row(referral, ReferralRecord)

        if not fields:
            return record

        self.logger.info("referral_updated", owner_id=owner_id, referral_id=referral_id, fields=sorted(fields))
        self._publish(ChangeType.UPDATE, owner_id, referral_id, record)
        self.recorder.record(
            owner_id,
            ActivityAction.REFERRAL_UPDATE,
            "referral",
            entity_id=referral_id,
            description=f"You updated {record.first_name} {record.last_name}",
            metadata={"fields": sorted(fields)},
        )
        return record

    def delete_referral(self, owner_id: str, referral_id: str) -> None:
        """Remove one of the owner's referrals.

        Raises:
            NotFoundError: Referral missing or owned by someone else
        """
        with self.db.session() as session:
            repo = ReferralRepository(session)
            referral = repo.get_owned(owner_id, referral_id)
            if not referral:
                raise NotFoundError("Referral not found")
            name = referral.full_name
            repo.delete(referral)

        self.logger.info("referral_deleted", owner_id=owner_id, referral_id=referral_id)
        self._publish(ChangeType.DELETE, owner_id, referral_id, None)
        self.recorder.record(
            owner_id,
            ActivityAction.REFERRAL_DELETE,
            "referral",
            entity_id=referral_id,
            description=f"You removed {name}",
        )

    def get_referral(self, owner_id: str, referral_id: str) -> ReferralRecord:
        with self.db.session() as session:
            referral = ReferralRepository(session).get_owned(owner_id, referral_id)
            record = map_row(referral, ReferralRecord)
        if record is None:
            raise NotFoundError("Referral not found")
        return record

    def list_referrals(
        self,
        owner_id: str,
        search: str | None = None,
        status: ReferralStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[ReferralRecord], int]:
        """List the owner's referrals, newest first.

        Returns:
            (page of referrals, exact total matching the filters)
        """
        with self.db.session() as session:
            repo = ReferralRepository(session)
            rows = repo.list_for_owner(owner_id, search=search, status=status, limit=limit, offset=offset)
            total = repo.count_for_owner(owner_id, search=search, status=status)
            return map_rows(rows, ReferralRecord), total

    def open_feed(self, owner_id: str, broker: ChangeBroker | None = None) -> ReferralFeed:
        """Load the owner's referrals and keep them current from the change channel.

        The caller owns the returned feed and must ``close()`` it.
        """
        feed = ReferralFeed(owner_id)
        feed.attach(broker or self.broker)
        items, total = self.list_referrals(owner_id)
        # Changes that raced the initial load are already applied; keep them
        known = {item.id for item in feed.items}
        feed.items.extend(item for item in items if item.id not in known)
        feed.total = max(total, len(feed.items))
        return feed

    def link_registered_user(self, session: Session, user_id: str, identification: str) -> list[ReferralRecord]:
        """Point pending referral rows for ``identification`` at the new user.

        Runs inside the caller's transaction. Rows whose link would close a
        cycle are left unlinked.
        """
        users = UserRepository(session)
        linked = []
        for referral in ReferralRepository(session).unlinked_by_identification(identification):
            if users.would_create_cycle(referral.referred_by, user_id):
                self.logger.warning(
                    "referral_link_skipped_cycle",
                    referral_id=referral.id,
                    user_id=user_id,
                )
                continue
            referral.user_id = user_id
            linked.append(referral)
        session.flush()
        return map_rows(linked, ReferralRecord)

    def publish_linked(self, records: list[ReferralRecord]) -> None:
        """Announce back-links set by ``link_registered_user`` once committed."""
        for record in records:
            self._publish(ChangeType.UPDATE, record.referred_by, record.id, record)


# Singleton instance
referral_service = ReferralService()
