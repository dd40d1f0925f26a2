"""Profile editing and admin re-parenting."""

from redamigos.activity.recorder import ActivityAction, ActivityRecorder, activity_recorder
from redamigos.auth.models import ProfileUpdate
from redamigos.errors import NotFoundError, ReferralCycleError
from redamigos.logging_config import get_logger
from redamigos.storage.db import Database, db
from redamigos.storage.repo import UserRepository
from redamigos.storage.schemas import UserProfile, map_row
from redamigos.validators import normalize_phone, require_fields

logger = get_logger(__name__)


class ProfileService:
    """Service for reading and changing user profiles."""

    def __init__(self, database: Database | None = None, recorder: ActivityRecorder | None = None):
        self.db = database or db
        self.recorder = recorder or activity_recorder
        self.logger = get_logger(__name__)

    def get_profile(self, user_id: str) -> UserProfile:
        with self.db.session() as session:
            profile = map_row(UserRepository(session).get_by_id(user_id), UserProfile)
        if profile is None:
            raise NotFoundError("Unknown profile")
        return profile

    def update_profile(self, user_id: str, changes: ProfileUpdate) -> UserProfile:
        """Apply the owner's edits.

        Identification, role and referral code are not editable here.

        Raises:
            NotFoundError: Unknown user
            ValidationError: Blank name or invalid phone
        """
        fields = changes.model_dump(exclude_unset=True)
        if "phone" in fields:
            fields["phone"] = normalize_phone(fields["phone"])
        if fields.get("zone") is not None:
            fields["zone"] = fields["zone"].value
        for key in ("first_name", "last_name"):
            if key in fields:
                require_fields(**{key: fields[key]})

        with self.db.session() as session:
            user = UserRepository(session).get_by_id(user_id)
            if not user:
                raise NotFoundError("Unknown profile")
            changed = sorted(key for key, value in fields.items() if getattr(user, key) != value)
            for key in changed:
                setattr(user, key, fields[key])
            session.flush()
            profile = map_row(user, UserProfile)

        if changed:
            self.logger.info("profile_updated", user_id=user_id, fields=changed)
            self.recorder.record(
                user_id,
                ActivityAction.PROFILE_UPDATE,
                "user",
                entity_id=user_id,
                description="You updated your profile",
                metadata={"fields": changed},
            )
        return profile

    def reassign_parent(self, admin_id: str, user_id: str, parent_user_id: str | None) -> UserProfile:
        """Move ``user_id`` under ``parent_user_id`` (None detaches it).

        Raises:
            NotFoundError: Unknown user or parent
            ReferralCycleError: The move would make a user its own ancestor
        """
        with self.db.session() as session:
            users = UserRepository(session)
            user = users.get_by_id(user_id)
            if not user:
                raise NotFoundError("Unknown profile")
            previous = user.parent_user_id

            if parent_user_id is not None:
                if not users.get_by_id(parent_user_id):
                    raise NotFoundError("Unknown parent profile")
                if users.would_create_cycle(parent_user_id, user_id):
                    self.logger.warning(
                        "parent_reassignment_rejected",
                        user_id=user_id,
                        parent_user_id=parent_user_id,
                    )
                    raise ReferralCycleError()

            user.parent_user_id = parent_user_id
            session.flush()
            profile = map_row(user, UserProfile)

        self.logger.info(
            "parent_reassigned",
            admin_id=admin_id,
            user_id=user_id,
            previous_parent_id=previous,
            parent_user_id=parent_user_id,
        )
        self.recorder.record(
            user_id,
            ActivityAction.PARENT_REASSIGNED,
            "user",
            entity_id=user_id,
            description="Your referrer was changed by an administrator",
            metadata={"previous_parent_id": previous, "parent_user_id": parent_user_id, "admin_id": admin_id},
        )
        return profile


# Singleton instance
profile_service = ProfileService()
