"""Activity recorder: append-only feed of network events."""

from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from redamigos.errors import CampaignError
from redamigos.logging_config import get_logger
from redamigos.settings import settings
from redamigos.storage.db import Database, db
from redamigos.storage.repo import ActivityRepository
from redamigos.storage.schemas import ActivityItem, map_row, map_rows

logger = get_logger(__name__)


class ActivityAction(str, Enum):
    """Kinds of feed entries."""
    NEW_REFERRAL = "new_referral"  # Someone registered with your code
    ADD_REFERRAL = "add_referral"  # You registered someone
    REFERRAL_UPDATE = "referral_update"
    REFERRAL_DELETE = "referral_delete"
    PROFILE_UPDATE = "profile_update"
    PARENT_REASSIGNED = "parent_reassigned"


class ActivityRecorder:
    """Service for appending and reading activity entries."""

    def __init__(self, database: Database | None = None):
        self.db = database or db
        self.logger = get_logger(__name__)

    def record(
        self,
        user_id: str,
        action: ActivityAction | str,
        entity_type: str,
        entity_id: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityItem | None:
        """Append one entry to ``user_id``'s feed.

        Runs in its own transaction. Failures are logged and swallowed:
        the feed is an audit trail, not part of the caller's transaction.

        Returns:
            The stored entry, or None if it could not be written
        """
        action_value = action.value if isinstance(action, ActivityAction) else action
        try:
            with self.db.session() as session:
                entry = ActivityRepository(session).add(
                    user_id=user_id,
                    action=action_value,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    description=description,
                    metadata=metadata,
                )
                item = map_row(entry, ActivityItem)
        except (SQLAlchemyError, CampaignError) as e:
            self.logger.warning(
                "activity_record_failed",
                user_id=user_id,
                action=action_value,
                error=str(e),
            )
            return None

        self.logger.info("activity_recorded", user_id=user_id, action=action_value, entity_id=entity_id)
        return item

    def list_activity(
        self,
        user_id: str,
        limit: int | None = settings.activity_default_limit,
        offset: int = 0,
    ) -> list[ActivityItem]:
        """Feed for ``user_id``, newest first.

        Args:
            user_id: Feed owner
            limit: Maximum entries; None returns the whole feed
            offset: Entries to skip, for paging

        Returns:
            Activity items
        """
        with self.db.session() as session:
            entries = ActivityRepository(session).list_for_user(user_id, limit=limit, offset=offset)
            return map_rows(entries, ActivityItem)


# Singleton instance
activity_recorder = ActivityRecorder()
