"""
Token Authority Tests
Issue/verify round trip, millisecond expiry, tamper rejection and refresh grace
"""

import json
from unittest.mock import patch

import jwt
import pytest
from jwt.utils import base64url_decode

from core.token_authority import DAY_MS, TokenAuthority
from schemas.jwt_claims import RoleEnum

SECRET = "test-secret-for-token-authority-0123456789"
T0 = 1_700_000_000_000

CLAIMS = {
    "discord_id": "100",
    "username": "runner",
    "avatar": "avatar-hash",
    "game_id": "G-1",
    "is_admin": False,
    "role": "member",
}


@pytest.fixture
def authority():
    return TokenAuthority(secret_key=SECRET)


def at(ms):
    return patch("core.token_authority.now_ms", return_value=ms)


class TestIssueAndVerify:
    """Round trip and wire format"""

    def test_round_trip_returns_claims(self, authority):
        with at(T0):
            token = authority.issue(CLAIMS)
            claims = authority.verify(token)

        assert claims is not None
        assert claims.discord_id == "100"
        assert claims.username == "runner"
        assert claims.avatar == "avatar-hash"
        assert claims.game_id == "G-1"
        assert claims.is_admin is False
        assert claims.role == RoleEnum.MEMBER

    def test_expiry_is_seven_days_in_milliseconds(self, authority):
        with at(T0):
            token = authority.issue(CLAIMS)
            claims = authority.verify(token)

        assert claims.exp == T0 + 7 * DAY_MS

    def test_caller_supplied_exp_is_replaced(self, authority):
        with at(T0):
            token = authority.issue({**CLAIMS, "exp": T0 + 365 * DAY_MS})
            claims = authority.verify(token)

        assert claims.exp == T0 + 7 * DAY_MS

    def test_wire_format(self, authority):
        with at(T0):
            token = authority.issue(CLAIMS)

        header_segment, payload_segment, signature_segment = token.split(".")
        header = json.loads(base64url_decode(header_segment))
        payload = json.loads(base64url_decode(payload_segment))

        assert header == {"alg": "HS256", "typ": "JWT"}
        assert payload["exp"] == T0 + 7 * DAY_MS
        assert "=" not in token

    def test_enum_role_is_serialized_as_value(self, authority):
        with at(T0):
            token = authority.issue({**CLAIMS, "role": RoleEnum.ADMIN})
            claims = authority.verify(token)

        assert claims.role == RoleEnum.ADMIN

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenAuthority(secret_key="")


class TestVerifyFailures:
    """Every failure collapses to None"""

    def test_expired_token_rejected(self, authority):
        with at(T0):
            token = authority.issue(CLAIMS)
        with at(T0 + 7 * DAY_MS + 1):
            assert authority.verify(token) is None

    def test_token_valid_until_exact_expiry(self, authority):
        with at(T0):
            token = authority.issue(CLAIMS)
        with at(T0 + 7 * DAY_MS):
            assert authority.verify(token) is not None

    def test_every_single_character_change_rejected(self, authority):
        with at(T0):
            token = authority.issue(CLAIMS)

            for i, char in enumerate(token):
                if char == ".":
                    continue
                replacement = "A" if char != "A" else "B"
                tampered = token[:i] + replacement + token[i + 1:]
                assert authority.verify(tampered) is None, f"accepted change at {i}"

    def test_wrong_secret_rejected(self, authority):
        with at(T0):
            token = TokenAuthority(secret_key="another-secret-0123456789abcdefghijkl").issue(CLAIMS)
            assert authority.verify(token) is None

    @pytest.mark.parametrize("token", [
        None,
        "",
        "not-a-token",
        "a.b",
        "a.b.c.d",
        "!!!.@@@.###",
    ])
    def test_malformed_tokens_rejected(self, authority, token):
        assert authority.verify(token) is None

    def test_claims_missing_subject_rejected(self, authority):
        with at(T0):
            token = jwt.encode({"username": "x", "exp": T0 + DAY_MS}, SECRET, algorithm="HS256")
            assert authority.verify(token) is None

    def test_non_numeric_exp_rejected(self, authority):
        with at(T0):
            token = jwt.encode({"discord_id": "100", "exp": "later"}, SECRET, algorithm="HS256")
            assert authority.verify(token) is None

    def test_none_algorithm_rejected(self, authority):
        with at(T0):
            token = jwt.encode({"discord_id": "100", "exp": T0 + DAY_MS}, None, algorithm="none")
            assert authority.verify(token) is None


class TestRefresh:
    """Refresh accepts recently expired tokens for active members"""

    @pytest.fixture
    def member(self):
        return {
            "discord_id": "100",
            "discord_username": "runner-renamed",
            "discord_avatar": None,
            "game_id": "G-2",
            "role": "moderator",
            "is_admin": False,
            "is_active": True,
        }

    def test_refresh_within_grace_issues_fresh_token(self, authority, member):
        with at(T0):
            token = authority.issue(CLAIMS)

        later = T0 + 7 * DAY_MS + 10 * DAY_MS
        with at(later):
            new_token = authority.refresh(token, member)
            claims = authority.verify(new_token)

        assert claims is not None
        assert claims.exp == later + 7 * DAY_MS
        assert claims.username == "runner-renamed"
        assert claims.avatar == "avatar-hash"
        assert claims.game_id == "G-2"
        assert claims.role == RoleEnum.MODERATOR

    def test_refresh_after_grace_rejected(self, authority, member):
        with at(T0):
            token = authority.issue(CLAIMS)
        with at(T0 + 7 * DAY_MS + 31 * DAY_MS):
            assert authority.refresh(token, member) is None

    def test_inactive_member_cannot_refresh(self, authority, member):
        with at(T0):
            token = authority.issue(CLAIMS)
            assert authority.refresh(token, {**member, "is_active": False}) is None

    def test_missing_member_cannot_refresh(self, authority):
        with at(T0):
            token = authority.issue(CLAIMS)
            assert authority.refresh(token, None) is None

    def test_member_must_match_subject(self, authority, member):
        with at(T0):
            token = authority.issue(CLAIMS)
            assert authority.refresh(token, {**member, "discord_id": "999"}) is None

    def test_unknown_member_role_keeps_previous_role(self, authority, member):
        with at(T0):
            token = authority.issue(CLAIMS)
            new_token = authority.refresh(token, {**member, "role": "superuser"})
            claims = authority.verify(new_token)

        assert claims.role == RoleEnum.MEMBER

    def test_grace_does_not_extend_plain_verification(self, authority):
        with at(T0):
            token = authority.issue(CLAIMS)
        with at(T0 + 8 * DAY_MS):
            assert authority.verify(token) is None
            assert authority.verify(token, grace_ms=authority.refresh_grace_ms) is not None
