"""
Playback endpoint

Hands out the stream uid with a fresh watermark and the client's geo
enrichment. No session is recorded here; the player reports back through
/api/tracking once playback qualifies.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from agents.session_recorder import SessionRecorder
from api.dependencies import get_client_signals, get_session_recorder
from core.database import get_db
from core.exceptions import NotFoundException, ValidationException
from core.session_store import VideoStore
from middleware.auth import get_current_claims
from schemas.jwt_claims import TokenClaims
from schemas.session import ClientSignals

router = APIRouter()


@router.get("/playback")
async def playback(
    video_id: Optional[str] = Query(default=None, alias="videoId"),
    claims: TokenClaims = Depends(get_current_claims),
    signals: ClientSignals = Depends(get_client_signals),
    recorder: SessionRecorder = Depends(get_session_recorder),
    db: AsyncSession = Depends(get_db),
):
    if not video_id:
        raise ValidationException("Video ID required")

    video = await VideoStore(db).get(video_id)
    if video is None:
        raise NotFoundException("Video not found")

    context = await recorder.playback_context(signals)
    return {
        "token": video.stream_uid,
        "sessionData": {
            "video_id": video_id,
            "discord_id": claims.discord_id,
            **context,
        },
    }
