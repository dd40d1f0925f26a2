"""Input normalization for identifications, phones and consent."""

import re

import phonenumbers
from phonenumbers import NumberParseException

from redamigos.errors import ValidationError
from redamigos.logging_config import get_logger
from redamigos.settings import settings

logger = get_logger(__name__)

_SEPARATORS = re.compile(r"[\s.\-]")
_DIGITS = re.compile(r"^\d{1,15}$")


def normalize_identification(value: str) -> str:
    """Strip separators from a national ID and check it is all digits.

    Args:
        value: Raw identification ("1.020.304.050", "1020304050")

    Returns:
        Digits only

    Raises:
        ValidationError: If the result is empty, not all digits or longer than 15
    """
    digits = _SEPARATORS.sub("", value or "")
    if not _DIGITS.match(digits):
        raise ValidationError("Identification must contain only digits (at most 15)")
    return digits


def normalize_phone(phone: str | None, region: str | None = None) -> str | None:
    """Normalize a phone number to E.164.

    Args:
        phone: Raw phone number, may be empty
        region: Default region for national numbers

    Returns:
        E.164 phone or None when no phone was given

    Raises:
        ValidationError: If the number cannot be parsed or is not valid
    """
    if phone is None or not phone.strip():
        return None

    region = region or settings.default_phone_region
    try:
        parsed = phonenumbers.parse(phone, region)
    except NumberParseException as e:
        logger.debug("phone_parse_error", phone=phone, error=str(e))
        raise ValidationError("Invalid phone number") from e

    if not phonenumbers.is_valid_number(parsed):
        logger.debug("phone_invalid", phone=phone, region=region)
        raise ValidationError("Invalid phone number")

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def require_consent(terms_accepted: bool, privacy_accepted: bool) -> None:
    """Both consents are mandatory before any personal data is stored."""
    if not (terms_accepted and privacy_accepted):
        raise ValidationError("Terms and privacy policy must be accepted")


def require_fields(**fields: str | None) -> None:
    """Reject blank required fields, naming the first one missing."""
    for name, value in fields.items():
        if value is None or not str(value).strip():
            raise ValidationError(f"Field '{name}' is required")
