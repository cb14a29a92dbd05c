"""
Playback tracking endpoint

    {videoId, watermarkCode, watchSeconds}            -> open once qualifying
    {sessionId, watchSeconds}                         -> advance watch time
    {sessionId, action: "end"}                        -> close
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agents.session_recorder import SessionRecorder
from api.dependencies import get_client_signals, get_session_recorder
from core.database import get_db
from core.exceptions import ValidationException
from middleware.auth import get_current_claims
from schemas.jwt_claims import TokenClaims
from schemas.session import ClientSignals, TrackingRequest

router = APIRouter()


@router.post("/tracking")
async def track(
    body: TrackingRequest,
    claims: TokenClaims = Depends(get_current_claims),
    signals: ClientSignals = Depends(get_client_signals),
    recorder: SessionRecorder = Depends(get_session_recorder),
    db: AsyncSession = Depends(get_db),
):
    if body.action == "end":
        if not body.sessionId:
            raise ValidationException("Session ID required")
        await recorder.close(db, body.sessionId, claims.discord_id)
        return {"success": True}

    if body.watchSeconds is None:
        return {"success": True}

    if body.sessionId:
        session = await recorder.update(db, body.sessionId, body.watchSeconds, claims.discord_id)
        return {"success": True, "sessionId": session.id, "watchSeconds": session.watch_seconds}

    if body.watchSeconds < recorder.min_qualifying_seconds:
        return {"success": True}
    if not body.videoId:
        raise ValidationException("Video ID required")

    session = await recorder.start_or_record(
        db,
        claims.discord_id,
        body.videoId,
        signals,
        body.watchSeconds,
        watermark_code=body.watermarkCode,
    )
    return {"success": True, "sessionId": session.id}
