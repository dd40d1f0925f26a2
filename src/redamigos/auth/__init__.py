"""Identity, session state and registration for campaign users."""

from redamigos.auth.identity import AuthEvent, IdentityService, identity_service
from redamigos.auth.profile import ProfileService, profile_service
from redamigos.auth.registration import (
    RegistrationResult,
    RegistrationState,
    RegistrationWorkflow,
    registration_workflow,
)
from redamigos.auth.session import SessionState

__all__ = [
    "AuthEvent",
    "IdentityService",
    "identity_service",
    "ProfileService",
    "profile_service",
    "RegistrationResult",
    "RegistrationState",
    "RegistrationWorkflow",
    "registration_workflow",
    "SessionState",
]
