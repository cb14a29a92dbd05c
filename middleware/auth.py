"""
Bearer Token Authentication Dependencies
Every failure is reported as the same 401 so callers cannot probe which
check rejected the token.
"""
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import Counter

from core.config import settings
from core.exceptions import ForbiddenException, UnauthorizedException
from core.logging import get_logger
from core.token_authority import TokenAuthority
from schemas.jwt_claims import RoleEnum, TokenClaims

logger = get_logger(__name__)

# Metrics
unauthorized_attempts_total = Counter(
    'arena_unauthorized_access_attempts_total',
    'Requests rejected by authentication or authorization',
    ['reason']
)

security = HTTPBearer(auto_error=False)


@lru_cache
def get_token_authority() -> TokenAuthority:
    """Process-wide token authority built from settings"""
    return TokenAuthority(
        secret_key=settings.JWT_SECRET,
        ttl_days=settings.TOKEN_TTL_DAYS,
        refresh_grace_days=settings.TOKEN_REFRESH_GRACE_DAYS,
    )


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    Extract the raw bearer token

    Raises:
        UnauthorizedException: header missing or not a bearer scheme
    """
    if credentials is None or not credentials.credentials:
        unauthorized_attempts_total.labels(reason='missing').inc()
        raise UnauthorizedException()
    return credentials.credentials


def get_current_claims(
    token: str = Depends(get_bearer_token),
    authority: TokenAuthority = Depends(get_token_authority)
) -> TokenClaims:
    """
    Verify the bearer token and return its claims

    Usage:
        @router.get("/api/playback")
        async def playback(claims: TokenClaims = Depends(get_current_claims)):
            ...
    """
    claims = authority.verify(token)
    if claims is None:
        unauthorized_attempts_total.labels(reason='invalid').inc()
        raise UnauthorizedException()
    return claims


def is_admin(claims: TokenClaims) -> bool:
    """Admin flag, admin role, or listed in ADMIN_DISCORD_IDS"""
    return (
        claims.is_admin
        or claims.role == RoleEnum.ADMIN
        or claims.discord_id in settings.admin_ids
    )


def require_admin(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
    """
    Raises:
        ForbiddenException: authenticated but not an administrator
    """
    if not is_admin(claims):
        unauthorized_attempts_total.labels(reason='forbidden').inc()
        logger.warning("admin_access_denied", discord_id=claims.discord_id)
        raise ForbiddenException("Administrator access required")
    return claims
