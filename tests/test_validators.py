"""
Tests for input normalization.
"""
import pytest

from redamigos.errors import ValidationError
from redamigos.validators import normalize_identification, normalize_phone, require_consent, require_fields


class TestIdentification:
    """Tests for national ID normalization"""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1020304050", "1020304050"),
            ("1.020.304.050", "1020304050"),
            (" 1020-304 050 ", "1020304050"),
            ("123", "123"),
        ],
    )
    def test_separators_stripped(self, raw, expected):
        assert normalize_identification(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "12a45", "1234567890123456"])
    def test_rejected(self, raw):
        with pytest.raises(ValidationError):
            normalize_identification(raw)


class TestPhone:
    """Tests for E.164 phone normalization"""

    def test_national_mobile(self):
        assert normalize_phone("300 123 4567") == "+573001234567"

    def test_already_international(self):
        assert normalize_phone("+57 300 123 4567") == "+573001234567"

    def test_empty_is_none(self):
        assert normalize_phone(None) is None
        assert normalize_phone("  ") is None

    @pytest.mark.parametrize("raw", ["12", "not a phone"])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError):
            normalize_phone(raw)


class TestConsent:
    """Both consents are mandatory"""

    def test_both_accepted(self):
        require_consent(True, True)

    @pytest.mark.parametrize("terms, privacy", [(True, False), (False, True)])
    def test_missing(self, terms, privacy):
        with pytest.raises(ValidationError):
            require_consent(terms, privacy)


def test_require_fields_names_blank_field():
    with pytest.raises(ValidationError) as exc_info:
        require_fields(first_name="Ana", municipality="  ")
    assert "municipality" in exc_info.value.message
