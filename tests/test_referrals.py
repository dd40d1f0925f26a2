"""
Tests for owner-scoped referral management and the change feed.
"""
import pytest

from redamigos.activity.recorder import ActivityRecorder
from redamigos.errors import ConflictError, NotFoundError, ReferralCycleError, ValidationError
from redamigos.referral.models import ReferralCreate, ReferralUpdate
from redamigos.referral.realtime import ChangeBroker, ChangeType, ReferralChange
from redamigos.referral.service import ReferralService
from redamigos.storage.db import db
from redamigos.storage.models import ReferralStatus


@pytest.fixture
def broker():
    return ChangeBroker()


@pytest.fixture
def recorder():
    return ActivityRecorder(database=db)


@pytest.fixture
def service(broker, recorder):
    return ReferralService(database=db, recorder=recorder, broker=broker)


def _form(identification="1020304050", **overrides) -> ReferralCreate:
    data = {
        "identification": identification,
        "first_name": "Carlos",
        "last_name": "Mejía",
        "municipality": "Soacha",
        "phone": "300 123 4567",
        "terms_accepted": True,
        "privacy_accepted": True,
    }
    data.update(overrides)
    return ReferralCreate(**data)


class TestAddReferral:
    """Tests for registering a recruited person"""

    def test_add_normalizes_and_records(self, service, recorder, make_user):
        owner = make_user()
        record = service.add_referral(owner.id, _form(identification="1.020.304.050"))

        assert record.identification == "1020304050"
        assert record.phone == "+573001234567"
        assert record.referred_by == owner.id
        assert record.status == ReferralStatus.ACTIVE

        feed = recorder.list_activity(owner.id)
        assert [item.action for item in feed] == ["add_referral"]
        assert feed[0].entity_id == record.id

    def test_duplicate_identification_conflicts(self, service, make_user, row_counts):
        """Registering '123' twice leaves exactly one row"""
        owner, other = make_user(), make_user()
        service.add_referral(owner.id, _form(identification="123"))

        with pytest.raises(ConflictError) as exc_info:
            service.add_referral(other.id, _form(identification="123"))
        assert exc_info.value.message == "This person is already registered"
        assert row_counts()["referrals"] == 1

    @pytest.mark.parametrize("terms, privacy", [(False, True), (True, False), (False, False)])
    def test_consent_required(self, service, make_user, row_counts, terms, privacy):
        owner = make_user()
        with pytest.raises(ValidationError):
            service.add_referral(owner.id, _form(terms_accepted=terms, privacy_accepted=privacy))
        assert row_counts()["referrals"] == 0

    def test_invalid_phone_rejected(self, service, make_user):
        with pytest.raises(ValidationError):
            service.add_referral(make_user().id, _form(phone="12"))

    def test_unknown_owner(self, service):
        with pytest.raises(NotFoundError):
            service.add_referral("no-such-user", _form())

    def test_links_existing_user(self, service, make_user):
        owner = make_user()
        member = make_user(identification="77889900")
        record = service.add_referral(owner.id, _form(identification="77889900"))
        assert record.user_id == member.id

    def test_ancestor_cannot_be_referred(self, service, make_user):
        """Referring your own referrer would close a loop"""
        top = make_user(identification="11112222")
        child = make_user(parent_user_id=top.id)
        with pytest.raises(ReferralCycleError):
            service.add_referral(child.id, _form(identification="11112222"))

    def test_publishes_insert(self, service, broker, make_user):
        owner = make_user()
        seen = []
        with broker.subscribe(owner.id, seen.append):
            record = service.add_referral(owner.id, _form())
        assert [(c.type, c.referral_id) for c in seen] == [(ChangeType.INSERT, record.id)]


class TestUpdateDelete:
    """Tests for editing and removing referrals"""

    def test_update_fields(self, service, recorder, make_user):
        owner = make_user()
        record = service.add_referral(owner.id, _form())

        updated = service.update_referral(
            owner.id, record.id, ReferralUpdate(neighborhood="Centro", status=ReferralStatus.PENDING)
        )
        assert updated.neighborhood == "Centro"
        assert updated.status == ReferralStatus.PENDING
        assert recorder.list_activity(owner.id)[0].metadata == {"fields": ["neighborhood", "status"]}

    def test_null_status_rejected_before_store(self, service, make_user):
        owner = make_user()
        record = service.add_referral(owner.id, _form())

        with pytest.raises(ValidationError):
            service.update_referral(owner.id, record.id, ReferralUpdate(status=None))
        assert service.get_referral(owner.id, record.id).status == ReferralStatus.ACTIVE

    def test_only_owner_can_update(self, service, make_user):
        owner, stranger = make_user(), make_user()
        record = service.add_referral(owner.id, _form())
        with pytest.raises(NotFoundError):
            service.update_referral(stranger.id, record.id, ReferralUpdate(neighborhood="Centro"))

    def test_delete(self, service, make_user):
        owner = make_user()
        record = service.add_referral(owner.id, _form())
        service.delete_referral(owner.id, record.id)

        with pytest.raises(NotFoundError):
            service.get_referral(owner.id, record.id)
        with pytest.raises(NotFoundError):
            service.delete_referral(owner.id, record.id)


class TestListReferrals:
    """Tests for listing with search and totals"""

    def test_newest_first_with_total(self, service, make_user, make_referral):
        owner = make_user()
        first = make_referral(owner.id)
        second = make_referral(owner.id)

        items, total = service.list_referrals(owner.id)
        assert [r.id for r in items] == [second.id, first.id]
        assert total == 2

    def test_search_and_page(self, service, make_user, make_referral):
        owner = make_user()
        make_referral(owner.id, first_name="Camila")
        make_referral(owner.id, first_name="Camilo")
        make_referral(owner.id, first_name="Pedro")

        items, total = service.list_referrals(owner.id, search="cAmI", limit=1)
        assert total == 2
        assert len(items) == 1
        assert items[0].first_name == "Camilo"


class TestReferralFeed:
    """Tests for the locally maintained, incrementally updated list"""

    def test_feed_follows_changes(self, service, broker, make_user, make_referral):
        owner = make_user()
        existing = make_referral(owner.id)

        feed = service.open_feed(owner.id)
        try:
            assert [r.id for r in feed.items] == [existing.id]

            added = service.add_referral(owner.id, _form())
            assert [r.id for r in feed.items] == [added.id, existing.id]
            assert feed.total == 2

            service.update_referral(owner.id, added.id, ReferralUpdate(neighborhood="Bosa"))
            assert feed.items[0].neighborhood == "Bosa"

            service.delete_referral(owner.id, existing.id)
            assert [r.id for r in feed.items] == [added.id]
            assert feed.total == 1
        finally:
            feed.close()

        assert broker.active_channels() == 0

    def test_out_of_order_delete_is_noop(self, service, make_user, make_referral):
        owner = make_user()
        make_referral(owner.id)
        feed = service.open_feed(owner.id)
        try:
            feed.apply(ReferralChange(type=ChangeType.DELETE, owner_id=owner.id, referral_id="never-seen"))
            feed.apply(ReferralChange(type=ChangeType.UPDATE, owner_id=owner.id, referral_id="never-seen"))
            assert len(feed.items) == 1
            assert feed.total == 1
        finally:
            feed.close()

    def test_repeated_insert_replaces(self, service, make_user, make_referral):
        owner = make_user()
        record = make_referral(owner.id)
        feed = service.open_feed(owner.id)
        try:
            feed.apply(ReferralChange(type=ChangeType.INSERT, owner_id=owner.id, referral_id=record.id, record=record))
            assert len(feed.items) == 1
            assert feed.total == 1
        finally:
            feed.close()

    def test_close_is_idempotent(self, broker):
        subscription = broker.subscribe("owner", lambda change: None)
        subscription.close()
        subscription.close()
        assert broker.active_channels() == 0

    def test_failing_listener_does_not_block_others(self, broker):
        received = []

        def broken(change):
            raise RuntimeError("listener bug")

        broker.subscribe("owner", broken)
        broker.subscribe("owner", received.append)
        broker.publish(ReferralChange(type=ChangeType.DELETE, owner_id="owner", referral_id="r1"))
        assert len(received) == 1
