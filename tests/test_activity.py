"""
Tests for the append-only activity feed.
"""
from datetime import datetime, timedelta

import pytest

from redamigos.activity.recorder import ActivityAction, ActivityRecorder
from redamigos.errors import ImmutableRecordError
from redamigos.storage.db import db
from redamigos.storage.models import ActivityLog
from redamigos.storage.repo import ActivityRepository


@pytest.fixture
def recorder():
    return ActivityRecorder(database=db)


def _insert_entries(user_id: str, count: int) -> None:
    start = datetime(2024, 5, 1, 8, 0)
    with db.session() as session:
        for i in range(count):
            session.add(
                ActivityLog(
                    user_id=user_id,
                    action=ActivityAction.ADD_REFERRAL.value,
                    entity_type="referral",
                    description=f"entry {i}",
                    created_at=start + timedelta(minutes=i),
                )
            )


class TestRecord:
    """Tests for appending entries"""

    def test_record_returns_stored_item(self, recorder, make_user):
        user = make_user()
        item = recorder.record(
            user.id,
            ActivityAction.PROFILE_UPDATE,
            "user",
            entity_id=user.id,
            description="You updated your profile",
            metadata={"fields": ["phone"]},
        )

        assert item.action == "profile_update"
        assert item.metadata == {"fields": ["phone"]}
        assert recorder.list_activity(user.id)[0].id == item.id

    def test_failure_is_swallowed(self, recorder, make_user, store_down, monkeypatch):
        """Feed writes are best effort"""
        user = make_user()
        monkeypatch.setattr(ActivityRepository, "add", store_down)

        assert recorder.record(user.id, ActivityAction.ADD_REFERRAL, "referral") is None
        monkeypatch.undo()
        assert recorder.list_activity(user.id) == []


class TestListActivity:
    """Tests for reading the feed"""

    def test_newest_first(self, recorder, make_user):
        user = make_user()
        _insert_entries(user.id, 5)

        descriptions = [item.description for item in recorder.list_activity(user.id)]
        assert descriptions == ["entry 4", "entry 3", "entry 2", "entry 1", "entry 0"]

    def test_limit_is_honoured_without_hidden_cap(self, recorder, make_user):
        user = make_user()
        _insert_entries(user.id, 30)

        assert len(recorder.list_activity(user.id, limit=5)) == 5
        assert len(recorder.list_activity(user.id, limit=25)) == 25
        assert len(recorder.list_activity(user.id, limit=None)) == 30

    def test_offset_pages(self, recorder, make_user):
        user = make_user()
        _insert_entries(user.id, 6)

        page = recorder.list_activity(user.id, limit=2, offset=2)
        assert [item.description for item in page] == ["entry 3", "entry 2"]

    def test_feeds_are_per_user(self, recorder, make_user):
        alice, bob = make_user(), make_user()
        _insert_entries(alice.id, 3)
        assert recorder.list_activity(bob.id) == []


class TestImmutability:
    """Entries are never updated or deleted"""

    def test_update_rejected(self, recorder, make_user):
        user = make_user()
        item = recorder.record(user.id, ActivityAction.ADD_REFERRAL, "referral", description="original")

        with pytest.raises(ImmutableRecordError):
            with db.session() as session:
                entry = session.get(ActivityLog, item.id)
                entry.description = "rewritten"
                session.flush()

        assert recorder.list_activity(user.id)[0].description == "original"

    def test_delete_rejected(self, recorder, make_user):
        user = make_user()
        item = recorder.record(user.id, ActivityAction.ADD_REFERRAL, "referral")

        with pytest.raises(ImmutableRecordError):
            with db.session() as session:
                session.delete(session.get(ActivityLog, item.id))
                session.flush()

        assert len(recorder.list_activity(user.id)) == 1
