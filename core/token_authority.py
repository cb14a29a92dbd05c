"""
Token Authority - compact HS256 identity assertions

Tokens are three base64url segments, header.claims.signature, signed with
HMAC-SHA256 over "header.claims". Expiry is carried in the claims as epoch
milliseconds and checked here rather than by PyJWT (which expects seconds).

Verification is pure: no revocation list, no server-side session state. Every
failure collapses to None so callers cannot tell a bad signature from an
expired token or a malformed segment.
"""

from enum import Enum
from typing import Any, Dict, Optional

import jwt
from jwt.utils import base64url_decode, base64url_encode
from prometheus_client import Counter
from pydantic import ValidationError

from core.clock import now_ms
from core.logging import get_logger
from schemas.jwt_claims import RoleEnum, TokenClaims

logger = get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

token_verifications_total = Counter(
    'arena_token_verifications_total',
    'Token verification attempts',
    ['result']
)


class TokenAuthority:
    """
    Issues and verifies access tokens

    Usage:
        authority = TokenAuthority(secret_key=settings.JWT_SECRET)
        token = authority.issue({"discord_id": "123", "username": "neo"})
        claims = authority.verify(token)  # TokenClaims or None
    """

    ALGORITHM = "HS256"

    def __init__(
        self,
        secret_key: str,
        ttl_days: int = 7,
        refresh_grace_days: int = 30
    ):
        if not secret_key:
            raise ValueError("Token secret must not be empty")
        self.secret_key = secret_key
        self.ttl_ms = ttl_days * DAY_MS
        self.refresh_grace_ms = refresh_grace_days * DAY_MS

    def issue(self, claims: Dict[str, Any]) -> str:
        """
        Sign claims into a token expiring ttl_days from now

        Any exp present in claims is replaced.
        """
        payload = dict(claims)
        payload.pop("exp", None)
        if isinstance(payload.get("role"), Enum):
            payload["role"] = payload["role"].value
        payload["exp"] = now_ms() + self.ttl_ms
        return jwt.encode(payload, self.secret_key, algorithm=self.ALGORITHM)

    def verify(self, token: Optional[str], grace_ms: int = 0) -> Optional[TokenClaims]:
        """
        Verify signature and expiry

        Args:
            token: Compact token string
            grace_ms: Accept tokens expired by at most this many milliseconds

        Returns:
            TokenClaims on success, None on any failure
        """
        claims = self._decode(token, grace_ms)
        token_verifications_total.labels(
            result='valid' if claims else 'invalid'
        ).inc()
        return claims

    def refresh(self, token: Optional[str], member: Optional[Dict[str, Any]]) -> Optional[str]:
        """
        Re-issue a token with a fresh expiry

        The old token may be expired for up to refresh_grace_days. Identity
        fields are taken from the current member record so renamed or demoted
        members get up-to-date claims.

        Args:
            token: The token presented by the client
            member: Current member record (None or inactive refuses refresh)

        Returns:
            New token, or None if the old token or member is not acceptable
        """
        claims = self.verify(token, grace_ms=self.refresh_grace_ms)
        if claims is None or not member or not member.get("is_active", True):
            return None
        if member.get("discord_id") != claims.discord_id:
            return None

        role = member.get("role")
        if role not in {r.value for r in RoleEnum}:
            role = claims.role.value

        return self.issue({
            "discord_id": claims.discord_id,
            "username": member.get("discord_username") or claims.username,
            "avatar": member.get("discord_avatar") or claims.avatar,
            "game_id": member.get("game_id") or claims.game_id,
            "is_admin": bool(member.get("is_admin", claims.is_admin)),
            "role": role,
        })

    def _decode(self, token: Optional[str], grace_ms: int) -> Optional[TokenClaims]:
        if not token or not isinstance(token, str):
            return None
        try:
            segments = token.split(".")
            if len(segments) != 3:
                return None
            # Non-canonical base64 (altered padding bits) would decode to the
            # same signature bytes; require the exact encoding we produce.
            signature = segments[2]
            if base64url_encode(base64url_decode(signature)).decode("ascii") != signature:
                return None

            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.ALGORITHM],
                options={"verify_exp": False},
            )
            exp = payload.get("exp")
            if not isinstance(exp, (int, float)) or isinstance(exp, bool):
                return None
            if exp + grace_ms < now_ms():
                return None
            return TokenClaims(**payload)
        except (jwt.InvalidTokenError, ValidationError, ValueError, TypeError, UnicodeError):
            logger.debug("token_rejected")
            return None
