"""
Token refresh endpoint
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import get_db
from core.exceptions import UnauthorizedException
from core.logging import get_logger
from core.session_store import MemberStore
from core.token_authority import TokenAuthority
from middleware.auth import get_bearer_token, get_token_authority

logger = get_logger(__name__)

router = APIRouter()


@router.post("/auth/refresh")
async def refresh_token(
    token: str = Depends(get_bearer_token),
    authority: TokenAuthority = Depends(get_token_authority),
    db: AsyncSession = Depends(get_db),
):
    """
    Re-issue a token from the current member record

    Accepts tokens expired for up to TOKEN_REFRESH_GRACE_DAYS. Missing or
    inactive members get the same 401 as a bad token.
    """
    claims = authority.verify(token, grace_ms=authority.refresh_grace_ms)
    if claims is None:
        raise UnauthorizedException()

    member = await MemberStore(db).get(claims.discord_id)
    if member is None or not member.is_active:
        raise UnauthorizedException()

    new_token = authority.refresh(token, {
        "discord_id": member.discord_id,
        "discord_username": member.discord_username,
        "discord_avatar": member.discord_avatar,
        "game_id": member.game_id,
        "role": member.role,
        "is_admin": bool(member.is_admin) or member.discord_id in settings.admin_ids,
        "is_active": member.is_active,
    })
    if new_token is None:
        raise UnauthorizedException()

    logger.info("token_refreshed", discord_id=claims.discord_id)
    return {"token": new_token}
