"""
Domain exceptions for the referral network.

Every error the core raises derives from CampaignError so the API layer can
map the whole family to HTTP responses in one place.
"""


class CampaignError(Exception):
    """Base exception for referral network errors"""

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    default_message = "Campaign operation failed"


class ValidationError(CampaignError):
    """Raised when input is rejected before any store call"""

    default_message = "Invalid input"


class ReferralCycleError(ValidationError):
    """Raised when a link would make a user its own ancestor"""

    default_message = "A user cannot be its own ancestor in the network"


class ConflictError(CampaignError):
    """Raised on duplicate identification or referral code"""

    default_message = "Record already exists"


class NotFoundError(CampaignError):
    """Raised when a referral code or profile does not exist"""

    default_message = "Not found"


class AuthError(CampaignError):
    """Raised on bad credentials; the message never echoes the store's text"""

    default_message = "Invalid identification or password"


class GenerationCollision(CampaignError):
    """Raised when a minted referral code is already taken"""

    default_message = "Referral code collision"


class GenerationExhausted(CampaignError):
    """Raised when referral code minting runs out of attempts"""

    default_message = "Could not generate a unique referral code"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique referral code after {attempts} attempts")


class TransientError(CampaignError):
    """Raised when the store is unreachable"""

    default_message = "Service temporarily unavailable. Try again."


class OrphanedIdentity(CampaignError):
    """Raised when an identity exists but its profile could not be created"""

    default_message = "Profile could not be created"

    def __init__(self, identity_id: str, cause: Exception | None = None):
        self.identity_id = identity_id
        self.cause = cause
        super().__init__(f"Profile could not be created for identity {identity_id}")


class ImmutableRecordError(CampaignError):
    """Raised when an append-only row is updated or deleted"""

    default_message = "Activity entries are immutable"
