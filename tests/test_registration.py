"""
Tests for the registration workflow and the identity service.
"""
import pytest

from redamigos.activity.recorder import ActivityRecorder
from redamigos.auth.identity import AuthEvent, IdentityService, synthesize_email
from redamigos.auth.models import RegisterRequest
from redamigos.auth.registration import RegistrationState, RegistrationWorkflow
from redamigos.errors import AuthError, ConflictError, OrphanedIdentity, ValidationError
from redamigos.referral.codes import ReferralCodeService
from redamigos.referral.realtime import ChangeBroker
from redamigos.referral.service import ReferralService
from redamigos.storage.db import db
from redamigos.storage.repo import ActivityRepository, ReferralRepository, UserRepository

S = RegistrationState


@pytest.fixture
def identity():
    return IdentityService(database=db)


@pytest.fixture
def recorder():
    return ActivityRecorder(database=db)


@pytest.fixture
def codes():
    return ReferralCodeService(database=db)


@pytest.fixture
def workflow(identity, recorder, codes):
    referrals = ReferralService(database=db, recorder=recorder, broker=ChangeBroker())
    return RegistrationWorkflow(
        database=db, identity=identity, codes=codes, referrals=referrals, recorder=recorder
    )


def _request(identification="1020304050", **overrides) -> RegisterRequest:
    data = {
        "identification": identification,
        "first_name": "Valentina",
        "last_name": "Rojas",
        "municipality": "Bogotá",
        "terms_accepted": True,
        "privacy_accepted": True,
    }
    data.update(overrides)
    return RegisterRequest(**data)


class TestRegister:
    """Tests for the happy paths"""

    def test_without_code(self, workflow, identity):
        result = workflow.register(_request())

        assert result.success
        assert result.history == [S.START, S.IDENTITY_CREATED, S.PROFILE_CREATED, S.ACTIVITY_RECORDED, S.AUTHENTICATED]
        assert result.user.parent_user_id is None
        assert result.user.referral_code.startswith("GGF-")
        assert identity.user_from_token(result.session.access_token).id == result.user.id

    def test_with_code_links_parent_and_notifies_referrer(self, workflow, recorder, make_user):
        referrer = make_user(referral_code="GGF-K7M2QX")
        result = workflow.register(_request(referral_code="ggf-k7m2qx"))

        assert result.success
        assert result.history[1] == S.CODE_VALIDATED
        assert result.user.parent_user_id == referrer.id

        feed = recorder.list_activity(referrer.id)
        assert [(i.action, i.entity_id) for i in feed] == [("new_referral", result.user.id)]
        assert recorder.list_activity(result.user.id) == []

    def test_signs_in_automatically(self, workflow, identity):
        events = []
        unsubscribe = identity.on_auth_state_change(lambda event, session: events.append(event))
        try:
            result = workflow.register(_request())
        finally:
            unsubscribe()
        assert events == [AuthEvent.SIGNED_IN]
        assert result.session.user_id == result.user.id

    def test_back_links_pending_referral(self, workflow, make_user, make_referral):
        owner = make_user()
        pending = make_referral(owner.id, identification="5566778899")

        result = workflow.register(_request(identification="5566778899"))

        with db.session() as session:
            assert ReferralRepository(session).get(pending.id).user_id == result.user.id

    def test_activity_failure_does_not_roll_back(self, workflow, make_user, store_down, monkeypatch, row_counts):
        referrer = make_user(referral_code="GGF-K7M2QX")
        monkeypatch.setattr(ActivityRepository, "add", store_down)

        result = workflow.register(_request(referral_code="GGF-K7M2QX"))

        assert result.state == S.AUTHENTICATED
        assert S.ACTIVITY_RECORDED in result.history
        assert result.user.parent_user_id == referrer.id
        with db.session() as session:
            assert UserRepository(session).get_by_id(result.user.id) is not None
        assert row_counts()["activity"] == 0

    def test_gender_is_not_part_of_the_form(self):
        assert "gender" not in RegisterRequest.model_fields

    def test_retries_taken_code(self, workflow, codes, make_user, monkeypatch):
        make_user(referral_code="GGF-AAAAAA")
        candidates = iter(["GGF-AAAAAA", "GGF-BBBBBB"])
        monkeypatch.setattr(codes, "_mint", lambda: next(candidates))

        result = workflow.register(_request())
        assert result.user.referral_code == "GGF-BBBBBB"


class TestRegisterFailures:
    """Tests for terminal failure states"""

    def test_invalid_code_creates_nothing(self, workflow, make_user, row_counts):
        make_user(referral_code="GGF-K7M2QX")
        before = row_counts()

        result = workflow.register(_request(referral_code="GGF-000000"))

        assert result.state == S.CODE_INVALID
        assert not result.success
        assert result.message == "Invalid referral code"
        assert row_counts() == before

    def test_duplicate_identification(self, workflow, row_counts):
        assert workflow.register(_request()).success

        result = workflow.register(_request())
        assert result.state == S.IDENTITY_CREATION_FAILED
        assert isinstance(result.error, ConflictError)
        assert row_counts()["users"] == 1

    def test_missing_consent_raises_before_store(self, workflow, row_counts):
        with pytest.raises(ValidationError):
            workflow.register(_request(privacy_accepted=False))
        assert row_counts()["identities"] == 0

    def test_profile_failure_leaves_orphaned_identity(self, workflow, identity, store_down, monkeypatch, row_counts):
        monkeypatch.setattr(UserRepository, "create", store_down)

        result = workflow.register(_request())

        assert result.state == S.PROFILE_CREATION_FAILED
        assert isinstance(result.error, OrphanedIdentity)
        assert result.session is None
        assert row_counts()["users"] == 0

        orphans = identity.find_orphaned_identities()
        assert [o["identification"] for o in orphans] == ["1020304050"]
        assert orphans[0]["identity_id"] == result.error.identity_id

        identity.delete_identity(result.error.identity_id)
        assert identity.find_orphaned_identities() == []


class TestSignIn:
    """Tests for the identity service"""

    def test_initial_secret_is_identification(self, workflow, identity):
        registered = workflow.register(_request()).user
        session = identity.sign_in(synthesize_email("1020304050"), "1020304050")
        assert session.user_id == registered.id

    def test_bad_credentials_are_generic(self, workflow, identity):
        workflow.register(_request())

        with pytest.raises(AuthError) as wrong_secret:
            identity.sign_in(synthesize_email("1020304050"), "nope")
        with pytest.raises(AuthError) as unknown:
            identity.sign_in(synthesize_email("999999"), "999999")
        assert wrong_secret.value.message == unknown.value.message == "Invalid identification or password"

    def test_synthetic_email(self):
        assert synthesize_email("1020304050") == "1020304050@gustavogarcia.co"

    def test_invalid_token(self, identity):
        assert identity.verify_token("not-a-token") is None
        assert identity.user_from_token("not-a-token") is None

    def test_profile_identity_cannot_be_deleted(self, workflow, identity):
        result = workflow.register(_request())
        with pytest.raises(ConflictError):
            identity.delete_identity(result.session.identity_id)
