"""
Administrator endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agents.alert_agent import AlertAgent
from agents.anomaly_detection_agent import AnomalyDetectionAgent
from api.dependencies import get_alert_agent, get_detection_agent
from core.database import get_db
from middleware.auth import require_admin
from schemas.jwt_claims import TokenClaims

router = APIRouter()


@router.post("/admin/test-notification")
async def test_notification(
    claims: TokenClaims = Depends(require_admin),
    dispatcher: AlertAgent = Depends(get_alert_agent),
    detection_agent: AnomalyDetectionAgent = Depends(get_detection_agent),
    db: AsyncSession = Depends(get_db),
):
    """Send a test message through every configured channel and report per-channel results"""
    config = await detection_agent.load_settings(db)
    diagnostics = await dispatcher.send_test_notification(config.webhook_url)
    return {"success": diagnostics["ok"], "diagnostics": diagnostics}
