"""
Shared service singletons and request-scoped dependencies

Routes obtain collaborators through Depends() so tests can swap them with
app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Request

from agents.alert_agent import AlertAgent
from agents.anomaly_detection_agent import AnomalyDetectionAgent
from agents.session_recorder import SessionRecorder
from core.config import settings
from infrastructure.geo_client import GeoLookupClient
from schemas.session import ClientSignals


@lru_cache
def get_geo_client() -> GeoLookupClient:
    return GeoLookupClient(
        base_url=settings.GEO_LOOKUP_URL,
        timeout_seconds=settings.GEO_LOOKUP_TIMEOUT_SECONDS,
    )


@lru_cache
def get_alert_agent() -> AlertAgent:
    return AlertAgent()


@lru_cache
def get_detection_agent() -> AnomalyDetectionAgent:
    return AnomalyDetectionAgent(dispatcher=get_alert_agent())


@lru_cache
def get_session_recorder() -> SessionRecorder:
    return SessionRecorder(
        geo_client=get_geo_client(),
        detection_agent=get_detection_agent(),
    )


def get_client_signals(request: Request) -> ClientSignals:
    """
    Client IP, user agent and edge-reported city

    IP precedence: first X-Forwarded-For hop, Client-IP, X-Real-IP.
    """
    headers = request.headers
    forwarded = headers.get("x-forwarded-for", "")
    ip_address = (
        forwarded.split(",")[0].strip()
        or headers.get("client-ip")
        or headers.get("x-real-ip")
        or "unknown"
    )
    return ClientSignals(
        ip_address=ip_address,
        user_agent=headers.get("user-agent") or "unknown",
        city_hint=headers.get("cf-ipcity") or None,
    )


async def shutdown_services() -> None:
    """Drain pending deliveries and close outbound clients"""
    if get_alert_agent.cache_info().currsize:
        await get_alert_agent().aclose()
    if get_geo_client.cache_info().currsize:
        await get_geo_client().aclose()
    get_session_recorder.cache_clear()
    get_detection_agent.cache_clear()
    get_alert_agent.cache_clear()
    get_geo_client.cache_clear()
