"""
Unauthenticated watch-session telemetry
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agents.session_recorder import SessionRecorder
from api.dependencies import get_client_signals, get_session_recorder
from core.database import get_db
from schemas.session import ClientSignals, SessionLogRequest

router = APIRouter()


@router.post("/sessions/log")
async def log_session(
    body: SessionLogRequest,
    signals: ClientSignals = Depends(get_client_signals),
    recorder: SessionRecorder = Depends(get_session_recorder),
    db: AsyncSession = Depends(get_db),
):
    """Always reports success once the payload validates"""
    await recorder.log_session(db, body, signals)
    return {"success": True}
