"""
Tests for referral code minting and resolution.
"""
import re

import pytest

from redamigos.errors import GenerationCollision, GenerationExhausted, NotFoundError, TransientError
from redamigos.referral.codes import CODE_ALPHABET, ReferralCodeService, normalize_code
from redamigos.storage.db import db
from redamigos.storage.repo import UserRepository


@pytest.fixture
def codes():
    return ReferralCodeService(database=db, prefix="GGF", length=6, max_attempts=5)


class TestGenerate:
    """Tests for code minting"""

    def test_minted_code_format(self, codes):
        """Codes are the prefix plus six unambiguous characters"""
        code = codes.generate()
        assert re.fullmatch(rf"GGF-[{CODE_ALPHABET}]{{6}}", code)
        assert not set(code[4:]) & set("01OIL")

    def test_fallback_code_uses_last_digits(self, codes):
        assert codes.fallback_code("1020304050") == "GGF-304050"
        assert codes.fallback_code("123") == "GGF-123"

    def test_taken_candidate_is_a_collision(self, codes, make_user, monkeypatch):
        make_user(referral_code="GGF-AAAAAA")
        monkeypatch.setattr(codes, "_mint", lambda: "GGF-AAAAAA")
        with pytest.raises(GenerationCollision):
            codes.generate()

    def test_store_failure_falls_back_to_identification(self, codes, store_down, monkeypatch):
        monkeypatch.setattr(UserRepository, "generate_referral_code", store_down)
        assert codes.generate(identification="1020304050") == "GGF-304050"

    def test_store_failure_without_identification_is_transient(self, codes, store_down, monkeypatch):
        monkeypatch.setattr(UserRepository, "generate_referral_code", store_down)
        with pytest.raises(TransientError):
            codes.generate()


class TestIssue:
    """Tests for the bounded retry around the unique constraint"""

    def test_retries_until_insert_succeeds(self, codes):
        attempts = []

        def insert(code):
            attempts.append(code)
            if len(attempts) < 3:
                raise GenerationCollision()
            return code

        assert codes.issue(insert) == attempts[-1]
        assert len(attempts) == 3

    def test_gives_up_after_max_attempts(self):
        codes = ReferralCodeService(database=db, max_attempts=3)
        attempts = []

        def insert(code):
            attempts.append(code)
            raise GenerationCollision()

        with pytest.raises(GenerationExhausted) as exc_info:
            codes.issue(insert)
        assert len(attempts) == 3
        assert exc_info.value.attempts == 3

    def test_other_errors_are_not_retried(self, codes):
        attempts = []

        def insert(code):
            attempts.append(code)
            raise NotFoundError("boom")

        with pytest.raises(NotFoundError):
            codes.issue(insert)
        assert len(attempts) == 1


class TestResolve:
    """Tests for resolving codes to users"""

    def test_generate_then_resolve_returns_owner(self, codes, make_user):
        code = codes.generate()
        owner = make_user(referral_code=code)
        assert codes.resolve(code) == owner.id

    def test_resolve_normalizes_input(self, codes, make_user):
        owner = make_user(referral_code="GGF-K7M2QX")
        assert codes.resolve("  ggf-k7m2qx ") == owner.id

    def test_unknown_code_not_found(self, codes):
        with pytest.raises(NotFoundError):
            codes.resolve("GGF-000000")

    def test_empty_code_not_found(self, codes):
        with pytest.raises(NotFoundError):
            codes.resolve("   ")

    def test_lookup_is_tolerant(self, codes, make_user):
        owner = make_user(first_name="Marta", last_name="Ríos", referral_code="GGF-K7M2QX")
        found = codes.lookup("GGF-K7M2QX")
        assert found == {"user_id": owner.id, "referrer_name": "Marta Ríos", "code": "GGF-K7M2QX"}
        assert codes.lookup("GGF-000000") is None
        assert codes.lookup("") is None

    def test_share_link(self, codes):
        assert codes.share_link("GGF-K7M2QX") == "https://amigos.example.org/register/GGF-K7M2QX"


def test_normalize_code():
    assert normalize_code(" ggf-ab12cd\n") == "GGF-AB12CD"
    assert normalize_code(None) == ""
