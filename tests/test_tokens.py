"""Tests for the HS256 token codec."""

import pytest

from talenthub.config import Settings
from talenthub.service.runtime import get_runtime
from talenthub.service.tokens import (
    EMAIL_VERIFICATION,
    TWO_FACTOR,
    TokenCodec,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="a" * 48,
        jwt_refresh_secret="b" * 48,
        access_token_ttl_seconds=900,
        refresh_token_ttl_seconds=3600,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec(settings, clock):
    return TokenCodec(settings, clock=clock, leeway_seconds=0)


class TestAccessTokens:
    def test_round_trip_carries_identity(self, codec):
        token = codec.issue_access("user-1", "ann@example.com", "CANDIDATE")
        payload = codec.verify_access(token)
        assert payload["userId"] == "user-1"
        assert payload["email"] == "ann@example.com"
        assert payload["role"] == "CANDIDATE"
        assert payload["tokenType"] == "access"

    def test_expired_access_token_rejected(self, codec, clock):
        token = codec.issue_access("user-1", "ann@example.com", "CANDIDATE")
        clock.now += 901
        assert codec.verify_access(token) is None

    def test_default_codec_rejects_one_second_past_expiry(self, settings, clock):
        strict = TokenCodec(settings, clock=clock)
        token = strict.issue_access("user-1", "ann@example.com", "ADMIN")
        clock.now += 899
        assert strict.verify_access(token) is not None
        clock.now += 2
        assert strict.verify_access(token) is None

    def test_runtime_codec_applies_no_leeway(self, clock):
        runtime = get_runtime()
        assert runtime.tokens._leeway == 0
        codec = TokenCodec(runtime.settings, clock=clock)
        token = codec.issue_access("user-1", "ann@example.com", "CANDIDATE")
        clock.now += runtime.settings.access_token_ttl_seconds + 1
        assert codec.verify_access(token) is None

    def test_explicit_leeway_tolerates_small_skew(self, settings, clock):
        lenient = TokenCodec(settings, clock=clock, leeway_seconds=120)
        token = lenient.issue_access("user-1", "ann@example.com", "ADMIN")
        clock.now += 960
        assert lenient.verify_access(token) is not None

    def test_wrong_secret_rejected(self, codec, clock):
        token = codec.issue_access("user-1", "ann@example.com", "CANDIDATE")
        other = TokenCodec(
            Settings(jwt_secret="c" * 48, jwt_refresh_secret="d" * 48),
            clock=clock,
        )
        assert other.verify_access(token) is None

    def test_tampered_payload_rejected(self, codec):
        token = codec.issue_access("user-1", "ann@example.com", "CANDIDATE")
        header, payload, signature = token.split(".")
        forged = codec._encode_segment(b'{"userId":"admin","tokenType":"access"}')
        assert codec.verify_access(f"{header}.{forged}.{signature}") is None

    @pytest.mark.parametrize(
        "garbage", [None, "", "not-a-token", "a.b", "a.b.c", 12345, "ü.ö.ä"]
    )
    def test_garbage_returns_none(self, codec, garbage):
        assert codec.verify_access(garbage) is None
        assert codec.verify_refresh(garbage) is None
        assert codec.verify_generic(garbage) is None


class TestTagIsolation:
    def test_refresh_token_is_not_an_access_token(self, codec):
        issued = codec.issue_refresh("user-1", "ann@example.com")
        assert codec.verify_refresh(issued.token) is not None
        assert codec.verify_access(issued.token) is None

    def test_access_token_is_not_a_refresh_token(self, codec):
        token = codec.issue_access("user-1", "ann@example.com", "CANDIDATE")
        assert codec.verify_refresh(token) is None

    def test_verification_token_is_neither(self, codec):
        token = codec.issue_verification(
            "user-1", "ann@example.com", EMAIL_VERIFICATION, codec.verification_expiry(3600)
        )
        assert codec.verify_access(token) is None
        assert codec.verify_refresh(token) is None
        assert codec.verify_generic(token) is not None


class TestRefreshTokens:
    def test_each_refresh_token_is_unique(self, codec):
        first = codec.issue_refresh("user-1", "ann@example.com")
        second = codec.issue_refresh("user-1", "ann@example.com")
        assert first.token != second.token
        assert first.token_id != second.token_id

    def test_expiry_matches_configured_lifetime(self, codec, clock):
        issued = codec.issue_refresh("user-1", "ann@example.com")
        assert issued.expires_at.timestamp() == pytest.approx(clock.now + 3600, abs=1)
        payload = codec.verify_refresh(issued.token)
        assert payload["tokenId"] == issued.token_id


class TestVerificationTokens:
    def test_fields_present(self, codec, clock):
        expires = codec.verification_expiry(3600)
        token = codec.issue_verification("user-1", "ann@example.com", EMAIL_VERIFICATION, expires)
        payload = codec.verify_generic(token)
        assert payload["type"] == EMAIL_VERIFICATION
        assert payload["expires"] == expires
        assert payload["expires"] == int((clock.now + 3600) * 1000)

    def test_two_factor_subtype_has_shorter_signature_lifetime(self, codec, clock):
        token = codec.issue_verification(
            "user-1", "ann@example.com", TWO_FACTOR, codec.verification_expiry(600)
        )
        clock.now += 601
        assert codec.verify_generic(token) is None

    def test_unknown_subtype_rejected(self, codec):
        with pytest.raises(ValueError):
            codec.issue_verification("user-1", "ann@example.com", "password-reset", 0)
