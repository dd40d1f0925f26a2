"""Self-registration workflow.

    START -> CODE_VALIDATED (only with a code) -> IDENTITY_CREATED
          -> PROFILE_CREATED -> ACTIVITY_RECORDED -> AUTHENTICATED

Terminal failures: CODE_INVALID, IDENTITY_CREATION_FAILED,
PROFILE_CREATION_FAILED. Store and identity failures are returned in the
result, never raised. Malformed input raises ValidationError before the
first store call.
"""

from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from redamigos.activity.recorder import ActivityAction, ActivityRecorder, activity_recorder
from redamigos.auth.identity import IdentityService, identity_service, synthesize_email
from redamigos.auth.models import AuthSession, RegisterRequest
from redamigos.errors import (
    CampaignError,
    ConflictError,
    GenerationCollision,
    NotFoundError,
    OrphanedIdentity,
)
from redamigos.logging_config import get_logger
from redamigos.referral.codes import ReferralCodeService, referral_code_service
from redamigos.referral.service import ReferralService, referral_service
from redamigos.storage.db import Database, db
from redamigos.storage.models import UserRole
from redamigos.storage.repo import UserRepository
from redamigos.storage.schemas import ReferralRecord, UserProfile, map_row
from redamigos.validators import normalize_identification, normalize_phone, require_consent, require_fields

logger = get_logger(__name__)


class RegistrationState(str, Enum):
    START = "start"
    CODE_VALIDATED = "code_validated"
    IDENTITY_CREATED = "identity_created"
    PROFILE_CREATED = "profile_created"
    ACTIVITY_RECORDED = "activity_recorded"
    AUTHENTICATED = "authenticated"
    # Terminal failures
    CODE_INVALID = "code_invalid"
    IDENTITY_CREATION_FAILED = "identity_creation_failed"
    PROFILE_CREATION_FAILED = "profile_creation_failed"


@dataclass
class RegistrationResult:
    """Outcome of one registration attempt."""

    state: RegistrationState
    user: UserProfile | None = None
    session: AuthSession | None = None
    error: CampaignError | None = None
    history: list[RegistrationState] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state is RegistrationState.AUTHENTICATED

    @property
    def message(self) -> str | None:
        return self.error.message if self.error else None


class RegistrationWorkflow:
    """Orchestrates code check, identity, profile, activity and sign-in."""

    def __init__(
        self,
        database: Database | None = None,
        identity: IdentityService | None = None,
        codes: ReferralCodeService | None = None,
        referrals: ReferralService | None = None,
        recorder: ActivityRecorder | None = None,
    ):
        self.db = database or db
        self.identity = identity or identity_service
        self.codes = codes or referral_code_service
        self.referrals = referrals or referral_service
        self.recorder = recorder or activity_recorder
        self.logger = get_logger(__name__)

    def register(self, data: RegisterRequest, role: UserRole = UserRole.VOLUNTEER) -> RegistrationResult:
        """Register a new user, optionally under the owner of ``data.referral_code``.

        Raises:
            ValidationError: Missing consent, blank names or malformed identification/phone
        """
        require_consent(data.terms_accepted, data.privacy_accepted)
        require_fields(first_name=data.first_name, last_name=data.last_name)
        identification = normalize_identification(data.identification)
        phone = normalize_phone(data.phone)

        result = RegistrationResult(state=RegistrationState.START, history=[RegistrationState.START])

        # 1. Referral code must resolve before anything is created
        parent_user_id = None
        if data.referral_code:
            try:
                parent_user_id = self.codes.resolve(data.referral_code)
            except NotFoundError as e:
                return self._fail(result, RegistrationState.CODE_INVALID, e)
            except CampaignError as e:
                # Store unreachable: nothing created, caller may retry
                result.error = e
                self.logger.warning("registration_aborted", state=result.state.value, error=e.message)
                return result
            self._advance(result, RegistrationState.CODE_VALIDATED)

        # 2. Identity: identification is both the login and the initial secret
        try:
            identity_id = self.identity.sign_up(synthesize_email(identification), identification)
        except CampaignError as e:
            return self._fail(result, RegistrationState.IDENTITY_CREATION_FAILED, e)
        self._advance(result, RegistrationState.IDENTITY_CREATED)

        # 3. Profile, with a freshly issued referral code
        profile_fields = dict(
            auth_id=identity_id,
            identification=identification,
            email=data.email or synthesize_email(identification),
            phone=phone,
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            role=role,
            parent_user_id=parent_user_id,
            department=data.department,
            municipality=data.municipality,
            zone=data.zone.value if data.zone else None,
            neighborhood=data.neighborhood,
            birth_date=data.birth_date,
            occupation=data.occupation,
        )

        def insert_profile(code: str) -> tuple[UserProfile, list[ReferralRecord]]:
            try:
                with self.db.session() as session:
                    user = UserRepository(session).create(referral_code=code, **profile_fields)
                    linked = self.referrals.link_registered_user(session, user.id, identification)
                    profile = map_row(user, UserProfile)
            except IntegrityError as e:
                if self._code_taken(code):
                    raise GenerationCollision() from e
                raise ConflictError("This identification is already registered") from e
            return profile, linked

        try:
            profile, linked = self.codes.issue(insert_profile, identification=identification)
        except (CampaignError, SQLAlchemyError) as e:
            self.logger.error(
                "orphaned_identity",
                identity_id=identity_id,
                identification=identification,
                error=str(e),
            )
            return self._fail(
                result,
                RegistrationState.PROFILE_CREATION_FAILED,
                OrphanedIdentity(identity_id, cause=e),
            )
        result.user = profile
        self._advance(result, RegistrationState.PROFILE_CREATED)
        self.referrals.publish_linked(linked)

        # 4. Feed entry goes to the referrer, best effort
        if parent_user_id:
            self.recorder.record(
                parent_user_id,
                ActivityAction.NEW_REFERRAL,
                "user",
                entity_id=profile.id,
                description=f"{profile.full_name} joined your network",
            )
        self._advance(result, RegistrationState.ACTIVITY_RECORDED)

        # 5. Auto sign-in
        result.session = self.identity.issue_session(identity_id, profile.id)
        self._advance(result, RegistrationState.AUTHENTICATED)
        self.logger.info(
            "user_registered",
            user_id=profile.id,
            referral_code=profile.referral_code,
            parent_user_id=parent_user_id,
            linked_referrals=len(linked),
        )
        return result

    def _code_taken(self, code: str) -> bool:
        with self.db.session() as session:
            return UserRepository(session).code_exists(code)

    def _advance(self, result: RegistrationResult, state: RegistrationState) -> None:
        result.state = state
        result.history.append(state)
        self.logger.debug("registration_state", state=state.value)

    def _fail(self, result: RegistrationResult, state: RegistrationState, error: CampaignError) -> RegistrationResult:
        self._advance(result, state)
        result.error = error
        self.logger.warning("registration_failed", state=state.value, error=error.message)
        return result


# Singleton instance
registration_workflow = RegistrationWorkflow()
